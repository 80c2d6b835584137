from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from stock_manager.exceptions import ValidationError

def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)

def to_decimal(value) -> Optional[Decimal]:
    """Convert a price-like value to Decimal, None when it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None

def validate_item_fields(
    name=None,
    price=None,
    quantity=None,
    min_threshold=None,
    require_all: bool = True
) -> Dict[str, str]:
    """Validate item fields.

    Args:
        name: Item name
        price: Reference price
        quantity: Stock quantity
        min_threshold: Low stock threshold
        require_all: When False, fields left as None are not checked (partial update)

    Returns:
        Dictionary with validation errors
    """
    errors = {}

    if require_all or name is not None:
        if not name or not str(name).strip():
            errors['name'] = 'Item name is required'

    if require_all or price is not None:
        amount = to_decimal(price)
        if amount is None or amount <= 0:
            errors['price'] = 'Price is required and must be greater than 0'

    if quantity is not None and (not _is_int(quantity) or quantity < 0):
        errors['quantity'] = 'Quantity must be an integer >= 0'

    if min_threshold is not None and (not _is_int(min_threshold) or min_threshold < 0):
        errors['min_threshold'] = 'Minimum threshold must be an integer >= 0'

    return errors

def validate_location_fields(name=None, require_all: bool = True) -> Dict[str, str]:
    """Validate location fields.

    Returns:
        Dictionary with validation errors
    """
    errors = {}

    if require_all or name is not None:
        if not name or not str(name).strip():
            errors['name'] = 'Location name is required'

    return errors

def raise_for_errors(errors: Dict[str, str], message: str = "Validation error"):
    """Raise a ValidationError carrying the error dictionary, if any."""
    if errors:
        raise ValidationError(
            f"{message}: " + "; ".join(f"{field}: {text}" for field, text in errors.items()),
            details=errors
        )
