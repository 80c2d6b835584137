# stock_manager/services/sale_service.py
import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stock_manager.config import config
from stock_manager.models import Item, Location, LocationKind, SaleRecord, UserRef, utcnow
from stock_manager.exceptions import (
    DatabaseError, ItemNotFoundError, PermissionDeniedError, StockManagerError, ValidationError
)
from stock_manager.services.base import BaseService, translate_db_error
from stock_manager.services.transfer_service import check_quantity

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    'Date de Vente',
    'Article',
    'Catégorie',
    'Quantité',
    'Prix Unitaire',
    'Prix Total'
]

STATS_PERIODS = [
    'today', 'yesterday', 'this_week', 'this_month', 'this_year', 'last_three_months', 'all_time'
]


def parse_price(value) -> Decimal:
    """Convert a unit price to a Decimal greater than zero.

    Raises:
        ValidationError: Not a number, or not positive
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid unit price {value!r}", details={'unit_price': value})
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid unit price {value!r}", details={'unit_price': value})
    if not price.is_finite() or price <= 0:
        raise ValidationError(
            f"Unit price must be greater than 0, got {value}",
            details={'unit_price': str(value)}
        )
    return price.quantize(Decimal('0.01'))


class SaleService(BaseService):
    """Sales made at shops and the sales history.

    Recording a sale decrements the shop item and appends a SaleRecord in
    one transaction.
    """

    def __init__(self, session: Session):
        """Initialize the sale service.

        Args:
            session: Database session
        """
        super().__init__(session)
        self._inventory_rules = config.inventory_rules
        self._sales_rules = config.sales_rules

    def record_sale(
        self,
        item: Union[Item, int],
        quantity: int,
        acting_user: UserRef,
        unit_price=None,
        operation_id: Optional[str] = None
    ) -> SaleRecord:
        """Sell units of a shop item.

        Args:
            item: Shop item (or its ID) being sold
            quantity: Units sold
            acting_user: User making the sale
            unit_price: Price per unit (the item's reference price when None)
            operation_id: Client-generated key; replaying it returns the original record

        Returns:
            The SaleRecord written for this sale

        Raises:
            InvalidQuantityError, ValidationError, ItemNotFoundError,
            PermissionDeniedError, UnavailableError, DatabaseError
        """
        if acting_user is None:
            raise PermissionDeniedError("An acting user is required for a sale")

        if operation_id:
            replay = self.get_by_operation_id(operation_id)
            if replay is not None:
                logger.info(f"Sale {operation_id} already recorded as sale {replay.id}, not applied again")
                return replay
        else:
            operation_id = uuid.uuid4().hex

        if isinstance(item, int):
            item_id = item
            snapshot = self.session.get(Item, item_id)
            if snapshot is None:
                raise ItemNotFoundError(f"Item {item_id} not found", details={'item_id': item_id})
        else:
            item_id = item.id
            snapshot = item
        check_quantity(quantity, snapshot.quantity)
        price = parse_price(snapshot.price if unit_price is None else unit_price)

        try:
            record = self._apply_sale(item_id, quantity, price, acting_user, operation_id)
            self.session.commit()
        except StockManagerError:
            self.session.rollback()
            raise
        except IntegrityError as e:
            self.session.rollback()
            replay = self.get_by_operation_id(operation_id)
            if replay is not None:
                logger.info(f"Sale {operation_id} was recorded concurrently as sale {replay.id}")
                return replay
            logger.error(f"Integrity error during sale {operation_id}: {str(e)}")
            raise DatabaseError(f"Sale failed: {e}", details={'operation_id': operation_id})
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Store error during sale {operation_id}: {str(e)}")
            raise translate_db_error(e, f"sell item {item_id}")

        logger.info(
            f"Sold {quantity} x {record.item_name} at {record.unit_price} in shop {record.shop_id} "
            f"by user {acting_user.id} (sale {record.id}, operation {operation_id})"
        )
        return record

    def _apply_sale(
        self,
        item_id: int,
        quantity: int,
        price: Decimal,
        acting_user: UserRef,
        operation_id: str
    ) -> SaleRecord:
        shop_item = self.session.query(Item).filter(
            Item.id == item_id
        ).with_for_update().populate_existing().one_or_none()
        if shop_item is None:
            raise ItemNotFoundError(f"Item {item_id} not found", details={'item_id': item_id})

        shop = self.session.get(Location, shop_item.location_id)
        if shop is None or shop.kind != LocationKind.SHOP:
            raise PermissionDeniedError(
                f"Item {item_id} is not held by a shop, only shop stock can be sold",
                details={'item_id': item_id, 'location_id': shop_item.location_id}
            )

        if not acting_user.is_admin and acting_user.location_id != shop.id:
            raise PermissionDeniedError(
                f"User {acting_user.id} cannot sell stock of shop {shop.id}",
                details={'user_id': acting_user.id, 'shop_id': shop.id}
            )

        check_quantity(quantity, shop_item.quantity)
        shop_item.quantity -= quantity

        record = SaleRecord(
            operation_id=operation_id,
            item_id=shop_item.id,
            item_name=shop_item.name,
            item_category=shop_item.category or self._inventory_rules['uncategorized_label'],
            unit=shop_item.unit or self._inventory_rules['default_unit'],
            quantity=quantity,
            unit_price=price,
            total_price=price * quantity,
            shop_id=shop.id,
            shop_name=shop.name,
            user_id=str(acting_user.id) if acting_user.id is not None else None,
            user_name=acting_user.display_name,
            sale_date=utcnow()
        )
        self.session.add(record)
        self.session.flush()
        return record

    def quick_sale(self, item: Union[Item, int], acting_user: UserRef, operation_id: Optional[str] = None) -> SaleRecord:
        """Sell a single unit at the item's reference price."""
        return self.record_sale(item, 1, acting_user, operation_id=operation_id)

    def get_by_operation_id(self, operation_id: str) -> Optional[SaleRecord]:
        return self.session.query(SaleRecord).filter(
            SaleRecord.operation_id == operation_id
        ).first()

    def _scoped_query(self, user_id: Optional[str], is_admin: bool):
        query = self.session.query(SaleRecord)
        if not is_admin:
            if user_id is None:
                raise PermissionDeniedError("A user ID is required to read sales history")
            query = query.filter(SaleRecord.user_id == str(user_id))
        return query

    def get_sales(
        self,
        user_id: Optional[str] = None,
        is_admin: bool = False,
        limit: Optional[int] = None,
        shop_id: Optional[int] = None
    ) -> List[SaleRecord]:
        """Get sale records, newest first.

        Args:
            user_id: Only this user's sales, unless is_admin
            is_admin: Administrators see every sale
            limit: Maximum number of records (configured default when None, 0 for all)
            shop_id: Optional shop filter

        Returns:
            List of sale records
        """
        if limit is None:
            limit = self._sales_rules['history_limit']

        query = self._scoped_query(user_id, is_admin)
        if shop_id is not None:
            query = query.filter(SaleRecord.shop_id == shop_id)

        query = query.order_by(SaleRecord.sale_date.desc(), SaleRecord.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def get_sales_by_period(
        self,
        start: datetime,
        end: datetime,
        user_id: Optional[str] = None,
        is_admin: bool = False
    ) -> List[SaleRecord]:
        """Sales with start <= sale_date <= end, newest first."""
        if start > end:
            raise ValidationError(
                "Period start must not be after its end",
                details={'start': start.isoformat(), 'end': end.isoformat()}
            )
        return self._scoped_query(user_id, is_admin).filter(
            SaleRecord.sale_date >= start,
            SaleRecord.sale_date <= end
        ).order_by(SaleRecord.sale_date.desc(), SaleRecord.id.desc()).all()

    def get_sales_stats(
        self,
        user_id: Optional[str] = None,
        is_admin: bool = False,
        now: Optional[datetime] = None
    ) -> Dict[str, Dict]:
        """Sale count and revenue per period.

        Periods: today, yesterday, this_week (last 7 days), this_month
        (last 30 days), this_year (since January 1st), last_three_months
        (last 90 days) and all_time.
        """
        now = now or utcnow()
        today_start = datetime(now.year, now.month, now.day)
        yesterday_start = today_start - timedelta(days=1)
        windows = {
            'today': (today_start, None),
            'yesterday': (yesterday_start, today_start),
            'this_week': (now - timedelta(days=7), None),
            'this_month': (now - timedelta(days=30), None),
            'this_year': (datetime(now.year, 1, 1), None),
            'last_three_months': (now - timedelta(days=90), None),
            'all_time': (None, None),
        }

        stats = {period: {'count': 0, 'total': Decimal('0.00')} for period in STATS_PERIODS}
        for record in self._scoped_query(user_id, is_admin).all():
            for period, (start, end) in windows.items():
                if start is not None and record.sale_date < start:
                    continue
                if end is not None and record.sale_date >= end:
                    continue
                stats[period]['count'] += 1
                stats[period]['total'] += record.total_price or Decimal('0.00')
        return stats

    def export_sales_data(self, records: Iterable[SaleRecord]) -> Dict:
        """Tabular export of sale records.

        Returns:
            Dictionary with headers, rows, total_records and total_amount
        """
        date_format = self._sales_rules['export_date_format']
        rows = []
        total_amount = Decimal('0.00')
        for record in records:
            rows.append([
                record.sale_date.strftime(date_format) if record.sale_date else 'N/A',
                record.item_name or 'N/A',
                record.item_category or 'N/A',
                record.quantity or 0,
                record.unit_price,
                record.total_price
            ])
            total_amount += record.total_price or Decimal('0.00')

        return {
            'headers': list(EXPORT_HEADERS),
            'rows': rows,
            'total_records': len(rows),
            'total_amount': total_amount
        }
