# stock_manager/core/stock_status.py
from decimal import Decimal
from typing import Dict, Iterable, List

STATUS_OUT = 'out'
STATUS_LOW = 'low'
STATUS_GOOD = 'good'

STATUS_LABELS = {
    STATUS_OUT: 'Rupture',
    STATUS_LOW: 'Stock faible',
    STATUS_GOOD: 'En stock',
}

def get_stock_status(quantity: int, min_threshold: int) -> str:
    """Classify a stock level.

    Args:
        quantity: Current quantity
        min_threshold: Low stock threshold

    Returns:
        'out' when empty, 'low' at or under the threshold, 'good' otherwise
    """
    if (quantity or 0) == 0:
        return STATUS_OUT
    if quantity <= (min_threshold or 0):
        return STATUS_LOW
    return STATUS_GOOD

def get_stock_status_text(status: str) -> str:
    return STATUS_LABELS.get(status, 'N/A')

def calculate_total_value(items: Iterable) -> Decimal:
    """Sum of quantity * price over the items."""
    total = Decimal('0')
    for item in items:
        total += Decimal(item.quantity or 0) * Decimal(str(item.price or 0))
    return total

def calculate_total_quantity(items: Iterable) -> int:
    return sum(item.quantity or 0 for item in items)

def calculate_stock_stats(items: Iterable) -> Dict:
    """Compute stock counters for a list of items.

    Args:
        items: Items with quantity, min_threshold and price

    Returns:
        Dictionary with item counts per status, total quantity and value
    """
    items = list(items)
    statuses = [get_stock_status(item.quantity, item.min_threshold) for item in items]

    return {
        'total_items': len(items),
        'stock_out': statuses.count(STATUS_OUT),
        'stock_low': statuses.count(STATUS_LOW),
        'stock_normal': statuses.count(STATUS_GOOD),
        'total_quantity': calculate_total_quantity(items),
        'total_value': calculate_total_value(items)
    }

def filter_items_by_status(items: Iterable, status: str) -> List:
    """Keep the items whose stock status matches ('all' keeps everything)."""
    if status == 'all':
        return list(items)
    return [
        item for item in items
        if get_stock_status(item.quantity, item.min_threshold) == status
    ]
