from .numbering import (
    normalize_document_type, validate_year, year_bounds,
    format_document_number, parse_counter, fallback_number, is_valid_number
)
from .stock_status import (
    get_stock_status, get_stock_status_text, calculate_total_value,
    calculate_total_quantity, calculate_stock_stats, filter_items_by_status
)

__all__ = [
    'normalize_document_type',
    'validate_year',
    'year_bounds',
    'format_document_number',
    'parse_counter',
    'fallback_number',
    'is_valid_number',
    'get_stock_status',
    'get_stock_status_text',
    'calculate_total_value',
    'calculate_total_quantity',
    'calculate_stock_stats',
    'filter_items_by_status'
]
