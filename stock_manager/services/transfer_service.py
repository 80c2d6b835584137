# stock_manager/services/transfer_service.py
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from stock_manager.config import config
from stock_manager.models import (
    Item, Location, LocationKind, LocationLink, TransferRecord, TransferType, UserRef, utcnow
)
from stock_manager.exceptions import (
    DatabaseError, InvalidQuantityError, ItemNotFoundError, MissingDestinationError,
    PermissionDeniedError, StockManagerError, ValidationError
)
from stock_manager.services.base import BaseService, translate_db_error

logger = logging.getLogger(__name__)

EXPORT_HEADERS = [
    'Date de Transfert',
    'Article',
    'Quantité',
    'Dépôt Source',
    'Magasin Destination',
    'Type',
    'Utilisateur'
]

TYPE_LABELS = {
    TransferType.TRANSFER: 'Transfert',
    TransferType.REMOVE: 'Retrait',
}


def check_quantity(quantity, available: int):
    """Validate a withdrawal quantity against the available stock.

    Raises:
        InvalidQuantityError: Not an integer, not positive, or above the stock
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(
            f"Quantity must be a whole number, got {quantity!r}",
            details={'quantity': quantity}
        )
    if quantity <= 0:
        raise InvalidQuantityError(
            f"Quantity must be greater than 0, got {quantity}",
            details={'quantity': quantity}
        )
    if quantity > (available or 0):
        raise InvalidQuantityError(
            f"Requested {quantity} but only {available or 0} available",
            details={'quantity': quantity, 'available': available or 0}
        )


class TransferService(BaseService):
    """Depot withdrawals and their audit trail.

    A withdrawal credits the destination shop (merging into an existing
    (name, category) item or creating one), debits the depot item and
    appends a TransferRecord. The three writes are committed together or
    not at all.
    """

    def __init__(self, session: Session):
        """Initialize the transfer service.

        Args:
            session: Database session
        """
        super().__init__(session)
        self._inventory_rules = config.inventory_rules
        self._transfer_rules = config.transfer_rules

    def withdraw(
        self,
        item: Union[Item, int],
        quantity: int,
        depot_id: int,
        shop_id: Optional[int],
        mode: Union[TransferType, str],
        acting_user: UserRef,
        operation_id: Optional[str] = None
    ) -> TransferRecord:
        """Withdraw stock from a depot, either into a shop or out of circulation.

        Args:
            item: Depot item (or its ID) to withdraw from
            quantity: Units to withdraw
            depot_id: Depot holding the item
            shop_id: Destination shop, required for 'transfer', ignored for 'remove'
            mode: 'transfer' or 'remove'
            acting_user: User performing the withdrawal
            operation_id: Client-generated key; replaying it returns the original record

        Returns:
            The TransferRecord written for this withdrawal

        Raises:
            InvalidQuantityError, MissingDestinationError, ItemNotFoundError,
            PermissionDeniedError, UnavailableError, DatabaseError
        """
        try:
            mode = TransferType.from_string(mode)
        except ValueError as e:
            raise ValidationError(str(e), details={'mode': str(mode)})

        if acting_user is None:
            raise PermissionDeniedError("An acting user is required for a withdrawal")

        # A replay must succeed even when the first call emptied the item
        if operation_id:
            replay = self.get_by_operation_id(operation_id)
            if replay is not None:
                logger.info(f"Withdrawal {operation_id} already recorded as transfer {replay.id}, not applied again")
                return replay
        else:
            operation_id = uuid.uuid4().hex

        # Preconditions on the caller's view of the item, before any write
        if isinstance(item, int):
            item_id = item
            snapshot = self.session.get(Item, item_id)
            if snapshot is None:
                raise ItemNotFoundError(f"Item {item_id} not found", details={'item_id': item_id})
        else:
            item_id = item.id
            snapshot = item
        check_quantity(quantity, snapshot.quantity)

        if mode == TransferType.TRANSFER and shop_id is None:
            raise MissingDestinationError("A destination shop is required to transfer stock")
        if mode == TransferType.REMOVE:
            shop_id = None

        try:
            record = self._apply_withdrawal(item_id, quantity, depot_id, shop_id, mode, acting_user, operation_id)
            self.session.commit()
        except StockManagerError:
            self.session.rollback()
            raise
        except IntegrityError as e:
            self.session.rollback()
            replay = self.get_by_operation_id(operation_id)
            if replay is not None:
                logger.info(f"Withdrawal {operation_id} was recorded concurrently as transfer {replay.id}")
                return replay
            logger.error(f"Integrity error during withdrawal {operation_id}: {str(e)}")
            raise DatabaseError(f"Withdrawal failed: {e}", details={'operation_id': operation_id})
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Store error during withdrawal {operation_id}: {str(e)}")
            raise translate_db_error(e, f"withdraw item {item_id}")

        logger.info(
            f"{mode.value} of {quantity} x {record.item_name} from depot {depot_id}"
            f"{f' to shop {shop_id}' if shop_id else ''} by user {acting_user.id} "
            f"(transfer {record.id}, operation {operation_id})"
        )
        return record

    def _apply_withdrawal(
        self,
        item_id: int,
        quantity: int,
        depot_id: int,
        shop_id: Optional[int],
        mode: TransferType,
        acting_user: UserRef,
        operation_id: str
    ) -> TransferRecord:
        """Run the three withdrawal steps inside the current transaction."""
        depot_item = self.session.query(Item).filter(
            Item.id == item_id
        ).with_for_update().populate_existing().one_or_none()

        if depot_item is None or depot_item.location_id != depot_id:
            raise ItemNotFoundError(
                f"Item {item_id} not found in depot {depot_id}",
                details={'item_id': item_id, 'depot_id': depot_id}
            )

        depot = self.session.get(Location, depot_id)
        if depot is None or depot.kind != LocationKind.DEPOT:
            raise PermissionDeniedError(
                f"Location {depot_id} is not a depot, stock can only be withdrawn from depots",
                details={'depot_id': depot_id}
            )

        shop = None
        if mode == TransferType.TRANSFER:
            shop = self.session.get(Location, shop_id)
            if shop is None or shop.kind != LocationKind.SHOP:
                raise MissingDestinationError(
                    f"Destination shop {shop_id} does not exist",
                    details={'shop_id': shop_id}
                )
            if not self._is_linked(shop_id, depot_id):
                raise PermissionDeniedError(
                    f"Shop {shop_id} is not supplied by depot {depot_id}",
                    details={'shop_id': shop_id, 'depot_id': depot_id}
                )

        self._check_user_rights(acting_user, depot_id, shop_id, mode)

        # Fresh, locked stock decides; the caller's snapshot may be stale
        check_quantity(quantity, depot_item.quantity)

        if mode == TransferType.TRANSFER:
            self._credit_shop(depot_item, shop_id, quantity)

        depot_item.quantity = max(0, depot_item.quantity - quantity)

        record = TransferRecord(
            operation_id=operation_id,
            type=mode,
            item_name=depot_item.name,
            item_description=depot_item.description or '',
            item_category=depot_item.category or self._inventory_rules['uncategorized_label'],
            unit=depot_item.unit or self._inventory_rules['default_unit'],
            quantity=quantity,
            depot_id=depot_id,
            depot_name=depot.name,
            shop_id=shop_id,
            shop_name=shop.name if shop is not None else None,
            user_id=str(acting_user.id) if acting_user.id is not None else None,
            user_name=acting_user.display_name,
            created_at=utcnow()
        )
        self.session.add(record)
        self.session.flush()
        return record

    def _credit_shop(self, depot_item: Item, shop_id: int, quantity: int) -> Item:
        """Add stock to the shop item with the same (name, category), creating it if needed."""
        shop_item = self.session.query(Item).filter(
            Item.location_id == shop_id,
            Item.name == depot_item.name,
            Item.category == depot_item.category
        ).with_for_update().populate_existing().one_or_none()

        if shop_item is not None:
            shop_item.quantity = (shop_item.quantity or 0) + quantity
            logger.debug(f"Merged {quantity} into shop item {shop_item.id} (now {shop_item.quantity})")
            return shop_item

        shop_item = Item(
            location_id=shop_id,
            name=depot_item.name,
            category=depot_item.category,
            description=depot_item.description,
            min_threshold=depot_item.min_threshold,
            unit=depot_item.unit,
            price=depot_item.price,
            quantity=quantity
        )
        self.session.add(shop_item)
        self.session.flush()
        logger.debug(f"Created shop item {shop_item.id} at shop {shop_id} with quantity {quantity}")
        return shop_item

    def _is_linked(self, shop_id: int, depot_id: int) -> bool:
        return self.session.query(LocationLink.id).filter(
            LocationLink.shop_id == shop_id,
            LocationLink.depot_id == depot_id
        ).first() is not None

    def _check_user_rights(
        self,
        acting_user: UserRef,
        depot_id: int,
        shop_id: Optional[int],
        mode: TransferType
    ):
        """Shop users may only withdraw from depots linked to their own shop."""
        if acting_user.is_admin:
            return

        if acting_user.location_id is None:
            raise PermissionDeniedError(
                f"User {acting_user.id} is not assigned to a shop",
                details={'user_id': acting_user.id}
            )

        if mode == TransferType.TRANSFER and acting_user.location_id != shop_id:
            raise PermissionDeniedError(
                f"User {acting_user.id} cannot transfer stock into shop {shop_id}",
                details={'user_id': acting_user.id, 'shop_id': shop_id}
            )

        if not self._is_linked(acting_user.location_id, depot_id):
            raise PermissionDeniedError(
                f"User {acting_user.id} has no access to depot {depot_id}",
                details={'user_id': acting_user.id, 'depot_id': depot_id}
            )

    def get_by_operation_id(self, operation_id: str) -> Optional[TransferRecord]:
        return self.session.query(TransferRecord).filter(
            TransferRecord.operation_id == operation_id
        ).first()

    def get_transfers(
        self,
        user_id: Optional[str] = None,
        is_admin: bool = False,
        limit: Optional[int] = None,
        depot_id: Optional[int] = None,
        shop_id: Optional[int] = None
    ) -> List[TransferRecord]:
        """Get transfer records, newest first.

        Args:
            user_id: Only this user's records, unless is_admin
            is_admin: Administrators see every record
            limit: Maximum number of records (configured default when None, 0 for all)
            depot_id: Optional depot filter
            shop_id: Optional shop filter

        Returns:
            List of transfer records
        """
        if limit is None:
            limit = self._transfer_rules['history_limit']

        query = self._scoped_query(user_id, is_admin)
        if depot_id is not None:
            query = query.filter(TransferRecord.depot_id == depot_id)
        if shop_id is not None:
            query = query.filter(TransferRecord.shop_id == shop_id)

        query = query.order_by(TransferRecord.created_at.desc(), TransferRecord.id.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def _scoped_query(self, user_id: Optional[str], is_admin: bool):
        query = self.session.query(TransferRecord)
        if not is_admin:
            if user_id is None:
                raise PermissionDeniedError("A user ID is required to read transfer history")
            query = query.filter(TransferRecord.user_id == str(user_id))
        return query

    def get_transfer_stats(
        self,
        user_id: Optional[str] = None,
        is_admin: bool = False,
        now: Optional[datetime] = None
    ) -> Dict:
        """Count transfer records overall, today, over the last 7 days and per type."""
        now = now or utcnow()
        today_start = datetime(now.year, now.month, now.day)
        week_ago = now - timedelta(days=7)

        records = self._scoped_query(user_id, is_admin).all()

        return {
            'total': len(records),
            'today': sum(1 for r in records if r.created_at >= today_start),
            'this_week': sum(1 for r in records if r.created_at >= week_ago),
            'by_type': {
                TransferType.TRANSFER.value: sum(1 for r in records if r.type == TransferType.TRANSFER),
                TransferType.REMOVE.value: sum(1 for r in records if r.type == TransferType.REMOVE),
            }
        }

    def export_transfer_data(self, records: Iterable[TransferRecord]) -> Dict:
        """Tabular export of transfer records for spreadsheets or PDF reports.

        Returns:
            Dictionary with headers, rows and total_records
        """
        date_format = self._transfer_rules['export_date_format']
        rows = []
        for record in records:
            rows.append([
                record.created_at.strftime(date_format) if record.created_at else 'N/A',
                record.item_name or 'N/A',
                record.quantity or 0,
                record.depot_name or 'N/A',
                record.shop_name or 'N/A',
                TYPE_LABELS.get(record.type, 'N/A'),
                record.user_name or 'N/A'
            ])

        return {
            'headers': list(EXPORT_HEADERS),
            'rows': rows,
            'total_records': len(rows)
        }
