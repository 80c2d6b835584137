from .validation import (
    validate_item_fields, validate_location_fields, raise_for_errors, to_decimal
)

__all__ = [
    'validate_item_fields',
    'validate_location_fields',
    'raise_for_errors',
    'to_decimal'
]
