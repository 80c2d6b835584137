# stock_manager/core/numbering.py
import re
import time
from datetime import date
from typing import Optional, Tuple, Union

from ..exceptions import InvalidDocumentTypeError, ValidationError
from ..models import DocumentType

NUMBER_PATTERN = re.compile(r'^(\d{4})-(\d+)$')
_LEADING_DIGITS = re.compile(r'^\s*(\d+)')

def normalize_document_type(document_type: Union[str, DocumentType]) -> DocumentType:
    """Convert 'invoice' / 'quote' (or the enum itself) to a DocumentType.

    Raises:
        InvalidDocumentTypeError: For any other value
    """
    if isinstance(document_type, DocumentType):
        return document_type
    try:
        return DocumentType(str(document_type).strip().lower())
    except ValueError:
        raise InvalidDocumentTypeError(
            f"Invalid document type {document_type!r}, use 'invoice' or 'quote'",
            details={'document_type': document_type}
        )

def validate_year(year: Optional[int] = None) -> int:
    """Return a four digit year, defaulting to the current one."""
    if year is None:
        return date.today().year
    if isinstance(year, bool) or not isinstance(year, int) or not 1000 <= year <= 9999:
        raise ValidationError(f"Invalid year {year!r}, expected a four digit year")
    return year

def year_bounds(year: int) -> Tuple[str, str]:
    """Lexical range [lower, upper) holding every number of a year."""
    return f"{year}-", f"{year + 1}-"

def format_document_number(year: int, counter: int, width: int = 3) -> str:
    """Format a document number, e.g. (2025, 7) -> '2025-007'.

    Counters past the padding width are written in full ('2025-1000').
    """
    if counter < 0:
        raise ValidationError(f"Counter must not be negative, got {counter}")
    return f"{year}-{str(counter).zfill(width)}"

def parse_counter(number: Optional[str]) -> int:
    """Extract the numeric suffix of a document number.

    Unparsable values count as 0.
    """
    if not number or '-' not in number:
        return 0
    suffix = number.split('-', 1)[1]
    match = _LEADING_DIGITS.match(suffix)
    return int(match.group(1)) if match else 0

def fallback_number(year: int, width: int = 3, now_ms: Optional[int] = None) -> str:
    """Non-sequential number built from the last digits of a millisecond timestamp.

    Used when the counter cannot be reached.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = int(str(now_ms)[-width:])
    return format_document_number(year, suffix, width)

def is_valid_number(number: str) -> bool:
    return bool(NUMBER_PATTERN.match(number or ''))
