# stock_manager/services/numbering_service.py
import logging
from typing import Dict, Optional, Union

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stock_manager.config import config
from stock_manager.models import Document, DocumentSequence, DocumentType
from stock_manager.core.numbering import (
    fallback_number, format_document_number, normalize_document_type, parse_counter,
    validate_year, year_bounds
)
from stock_manager.exceptions import SequenceUnavailableError
from stock_manager.services.base import BaseService, translate_db_error

logger = logging.getLogger(__name__)


class NumberingService(BaseService):
    """Sequential invoice and quote numbers, one series per (type, year).

    Numbers come from a counter row incremented with a single UPDATE, so two
    callers can never be handed the same value.
    """

    def __init__(self, session: Session):
        """Initialize the numbering service.

        Args:
            session: Database session
        """
        super().__init__(session)
        rules = config.numbering_rules
        self.width = rules['counter_width']
        self.fallback_enabled = rules['fallback_enabled']
        self.max_retries = max(1, rules['max_retries'])

    def next_number(
        self,
        document_type: Union[str, DocumentType],
        year: Optional[int] = None,
        commit: bool = True
    ) -> str:
        """Allocate the next number of a series.

        Args:
            document_type: 'invoice' or 'quote'
            year: Year of the series (current year when None)
            commit: Commit the increment; pass False to keep it in the
                caller's transaction (the caller then owns the commit)

        Returns:
            Number such as '2025-007'

        Raises:
            InvalidDocumentTypeError: Unknown document type
            SequenceUnavailableError: Counter unreachable and fallback disabled
        """
        document_type = normalize_document_type(document_type)
        year = validate_year(year)

        try:
            if commit:
                value = self._increment(document_type, year)
                self.session.commit()
            else:
                # Only the savepoint is rolled back on failure; the caller's
                # pending writes stay in its transaction
                with self.session.begin_nested():
                    value = self._increment(document_type, year)
        except (SQLAlchemyError, SequenceUnavailableError) as e:
            if commit:
                self.session.rollback()
            if not self.fallback_enabled:
                logger.error(f"Cannot allocate {document_type.value} number for {year}: {str(e)}")
                if isinstance(e, SequenceUnavailableError):
                    raise
                raise SequenceUnavailableError(
                    f"Cannot allocate {document_type.value} number for {year}",
                    details={'document_type': document_type.value, 'year': year, 'cause': str(e)}
                )
            number = fallback_number(year, self.width)
            logger.warning(
                f"Counter for {document_type.value}/{year} unavailable ({str(e)}), "
                f"using non-sequential fallback number {number}"
            )
            return number

        number = format_document_number(year, value, self.width)
        logger.debug(f"Allocated {document_type.value} number {number}")
        return number

    def _increment(self, document_type: DocumentType, year: int) -> int:
        """Bump the counter row, creating it from existing documents on first use."""
        for attempt in range(1, self.max_retries + 1):
            result = self.session.execute(
                update(DocumentSequence)
                .where(
                    DocumentSequence.document_type == document_type,
                    DocumentSequence.year == year
                )
                .values(last_value=DocumentSequence.last_value + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                return self._read_counter(document_type, year)

            seed = self._seed_from_documents(document_type, year)
            try:
                with self.session.begin_nested():
                    self.session.add(DocumentSequence(
                        document_type=document_type,
                        year=year,
                        last_value=seed + 1
                    ))
            except IntegrityError:
                # Another caller created the row first; its UPDATE path applies now
                logger.debug(
                    f"Counter {document_type.value}/{year} created concurrently, "
                    f"retrying ({attempt}/{self.max_retries})"
                )
                continue

            logger.info(f"Started {document_type.value} counter for {year} at {seed + 1} (seed {seed})")
            return seed + 1

        raise SequenceUnavailableError(
            f"Could not create the {document_type.value} counter for {year} "
            f"after {self.max_retries} attempts",
            details={'document_type': document_type.value, 'year': year}
        )

    def _read_counter(self, document_type: DocumentType, year: int) -> Optional[int]:
        return self.session.execute(
            select(DocumentSequence.last_value).where(
                DocumentSequence.document_type == document_type,
                DocumentSequence.year == year
            )
        ).scalar_one_or_none()

    def _seed_from_documents(self, document_type: DocumentType, year: int) -> int:
        """Highest counter already used by stored documents of the series."""
        lower, upper = year_bounds(year)
        numbers = self.session.execute(
            select(Document.number).where(
                Document.document_type == document_type,
                Document.number >= lower,
                Document.number < upper
            )
        ).scalars().all()
        return max((parse_counter(number) for number in numbers), default=0)

    def preview_number(self, document_type: Union[str, DocumentType], year: Optional[int] = None) -> str:
        """Number the next allocation would return, without allocating it."""
        document_type = normalize_document_type(document_type)
        year = validate_year(year)

        try:
            current = self._read_counter(document_type, year)
            if current is None:
                current = self._seed_from_documents(document_type, year)
        except SQLAlchemyError as e:
            logger.warning(f"Cannot preview {document_type.value} number for {year}: {str(e)}")
            return fallback_number(year, self.width)

        return format_document_number(year, current + 1, self.width)

    def current_counters(self, year: Optional[int] = None) -> Dict[str, int]:
        """Last number issued per document type for a year (0 when none)."""
        year = validate_year(year)
        return {
            document_type.value: self._read_counter(document_type, year) or 0
            for document_type in DocumentType
        }

    def reset_counters(
        self,
        year: Optional[int] = None,
        document_type: Optional[Union[str, DocumentType]] = None
    ) -> int:
        """Drop counter rows so they are re-seeded from stored documents.

        Args:
            year: Year to reset (current year when None)
            document_type: Only this series, or both when None

        Returns:
            Number of counter rows removed
        """
        year = validate_year(year)
        statement = delete(DocumentSequence).where(DocumentSequence.year == year)
        if document_type is not None:
            statement = statement.where(
                DocumentSequence.document_type == normalize_document_type(document_type)
            )

        try:
            removed = self.session.execute(statement).rowcount
        except SQLAlchemyError as e:
            self.session.rollback()
            raise translate_db_error(e, f"reset counters for {year}")
        self._commit(f"reset counters for {year}")

        logger.info(f"Reset {removed} document counter(s) for {year}")
        return removed
