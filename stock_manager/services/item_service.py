# stock_manager/services/item_service.py
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from stock_manager.config import config
from stock_manager.models import Category, Item, Location, LocationKind, LocationLink
from stock_manager.core.stock_status import STATUS_GOOD, calculate_total_value, get_stock_status
from stock_manager.exceptions import NotFoundError, ValidationError
from stock_manager.services.base import BaseService
from stock_manager.utils.validation import validate_item_fields, raise_for_errors, to_decimal

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ('name', 'category', 'description', 'unit', 'quantity', 'min_threshold', 'price')


class ItemService(BaseService):
    """Service for handling item operations."""

    def __init__(self, session: Session):
        """Initialize the item service.

        Args:
            session: Database session
        """
        super().__init__(session)
        self._inventory_rules = None

    @property
    def inventory_rules(self) -> Dict:
        if self._inventory_rules is None:
            self._inventory_rules = config.inventory_rules
        return self._inventory_rules

    def get_item(self, item_id: int) -> Optional[Item]:
        """Get an item by ID.

        Args:
            item_id: Item ID

        Returns:
            Item object or None if not found
        """
        return self.session.get(Item, item_id)

    def require_item(self, item_id: int) -> Item:
        item = self.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found", details={'item_id': item_id})
        return item

    def get_items(self, location_id: Optional[int] = None) -> List[Item]:
        """Get items ordered by name, optionally for one location only."""
        query = self.session.query(Item)
        if location_id is not None:
            query = query.filter(Item.location_id == location_id)
        return query.order_by(Item.name, Item.id).all()

    def find_matching_item(self, location_id: int, name: str, category: str) -> Optional[Item]:
        """Find the item identified by (name, category) at a location."""
        return self.session.query(Item).filter(
            Item.location_id == location_id,
            Item.name == name,
            Item.category == (category or '')
        ).first()

    def search_items(self, term: str, location_id: Optional[int] = None) -> List[Item]:
        """Case-insensitive search on item name, category and description."""
        pattern = f"%{(term or '').strip().lower()}%"
        query = self.session.query(Item).filter(or_(
            func.lower(Item.name).like(pattern),
            func.lower(Item.category).like(pattern),
            func.lower(Item.description).like(pattern)
        ))
        if location_id is not None:
            query = query.filter(Item.location_id == location_id)
        return query.order_by(Item.name, Item.id).all()

    def create_item(
        self,
        location_id: int,
        name: str,
        category: str,
        price,
        quantity: int = 0,
        min_threshold: Optional[int] = None,
        description: Optional[str] = None,
        unit: Optional[str] = None
    ) -> Item:
        """Create a new item at a location.

        Args:
            location_id: Owning shop or depot
            name: Item name
            category: Category name
            price: Reference price, must be greater than 0
            quantity: Initial stock
            min_threshold: Low stock threshold (configured default when None)
            description: Optional description
            unit: Optional unit label

        Returns:
            The created item
        """
        if min_threshold is None:
            min_threshold = self.inventory_rules['default_min_threshold']

        raise_for_errors(
            validate_item_fields(name=name, price=price, quantity=quantity, min_threshold=min_threshold),
            "Invalid item"
        )

        location = self.session.get(Location, location_id)
        if location is None:
            raise NotFoundError(f"Location {location_id} not found", details={'location_id': location_id})

        name = name.strip()
        category = (category or '').strip()
        if self.find_matching_item(location_id, name, category):
            raise ValidationError(
                f"Item {name!r} in category {category!r} already exists at location {location_id}",
                details={'location_id': location_id, 'name': name, 'category': category}
            )

        item = Item(
            location_id=location_id,
            name=name,
            category=category,
            description=description,
            unit=unit,
            quantity=quantity,
            min_threshold=min_threshold,
            price=to_decimal(price)
        )
        self.session.add(item)
        self._commit(f"create item {name!r}")

        logger.info(f"Created item {item.id} ({name}/{category}) at location {location_id} with quantity {quantity}")
        return item

    def update_item(self, item_id: int, **fields) -> Item:
        """Update item fields.

        Args:
            item_id: Item ID
            **fields: Any of name, category, description, unit, quantity, min_threshold, price
        """
        item = self.require_item(item_id)

        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise_for_errors({field: 'Field cannot be updated' for field in sorted(unknown)}, "Invalid item update")

        raise_for_errors(
            validate_item_fields(
                name=fields.get('name'),
                price=fields.get('price'),
                quantity=fields.get('quantity'),
                min_threshold=fields.get('min_threshold'),
                require_all=False
            ),
            "Invalid item"
        )

        if 'name' in fields:
            fields['name'] = fields['name'].strip()
        if 'category' in fields:
            fields['category'] = (fields['category'] or '').strip()
        if 'price' in fields:
            fields['price'] = to_decimal(fields['price'])

        new_name = fields.get('name', item.name)
        new_category = fields.get('category', item.category)
        if (new_name, new_category) != (item.name, item.category):
            duplicate = self.find_matching_item(item.location_id, new_name, new_category)
            if duplicate is not None and duplicate.id != item.id:
                raise ValidationError(
                    f"Item {new_name!r} in category {new_category!r} already exists at location {item.location_id}"
                )

        for field, value in fields.items():
            setattr(item, field, value)

        self._commit(f"update item {item_id}")
        logger.info(f"Updated item {item_id}: {sorted(fields)}")
        return item

    def update_quantity(self, item_id: int, quantity: int) -> Item:
        """Set the stock of an item (manual count or correction)."""
        return self.update_item(item_id, quantity=quantity)

    def update_price(self, item_id: int, price) -> Item:
        return self.update_item(item_id, price=price)

    def delete_item(self, item_id: int) -> bool:
        """Delete an item.

        Transfer records keep their copy of the item fields.
        """
        item = self.require_item(item_id)
        self.session.delete(item)
        self._commit(f"delete item {item_id}")
        logger.info(f"Deleted item {item_id}")
        return True

    def get_withdrawal_candidates(self, shop_id: int) -> List[Item]:
        """Items in stock at the depots linked to a shop.

        Args:
            shop_id: Shop ID

        Returns:
            Depot items with quantity > 0, ordered by name
        """
        shop = self.session.get(Location, shop_id)
        if shop is None or shop.kind != LocationKind.SHOP:
            raise NotFoundError(f"Shop {shop_id} not found", details={'shop_id': shop_id})

        return self.session.query(Item).join(
            LocationLink, LocationLink.depot_id == Item.location_id
        ).filter(
            LocationLink.shop_id == shop_id,
            Item.quantity > 0
        ).order_by(Item.name, Item.id).all()

    def get_low_stock_items(self, location_id: Optional[int] = None) -> List[Item]:
        """Items at or under their minimum threshold, including empty ones."""
        return [
            item for item in self.get_items(location_id)
            if get_stock_status(item.quantity, item.min_threshold) != STATUS_GOOD
        ]

    def create_category(self, name: str, description: Optional[str] = None) -> Category:
        if not name or not name.strip():
            raise ValidationError("Category name is required", details={'name': 'Category name is required'})

        name = name.strip()
        if self.session.query(Category).filter(Category.name == name).first():
            raise ValidationError(f"Category {name!r} already exists")

        category = Category(name=name, description=description)
        self.session.add(category)
        self._commit(f"create category {name!r}")
        logger.info(f"Created category {name!r}")
        return category

    def list_categories(self) -> List[Category]:
        return self.session.query(Category).order_by(Category.name).all()

    def get_stock_value(self, location_id: Optional[int] = None) -> Decimal:
        return calculate_total_value(self.get_items(location_id))
