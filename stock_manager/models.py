# stock_manager/models.py
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import enum

from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Boolean, ForeignKey, Text,
    Enum, Index, UniqueConstraint, CheckConstraint
)
from sqlalchemy.orm import declarative_base, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp used for every created_at / updated_at column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

Base = declarative_base()

class LocationKind(enum.Enum):
    """Role of a location in the stock flow.

    Values:
        SHOP ('shop'): Retail location that receives stock and sells it
        DEPOT ('depot'): Warehouse that supplies its linked shops
    """
    SHOP = 'shop'
    DEPOT = 'depot'

    def __str__(self):
        return self.value

    @classmethod
    def from_string(cls, value: str) -> 'LocationKind':
        """Create a LocationKind from 'shop' or 'depot'.

        Raises:
            ValueError if the string value is not valid
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid location kind: {value}. Valid values are: shop, depot")

class TransferType(enum.Enum):
    """Kind of depot withdrawal.

    Values:
        TRANSFER ('transfer'): Stock moves from a depot into a linked shop
        REMOVE ('remove'): Stock leaves circulation (personal or other use)
    """
    TRANSFER = 'transfer'
    REMOVE = 'remove'

    def __str__(self):
        return self.value

    @classmethod
    def from_string(cls, value) -> 'TransferType':
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Invalid withdrawal mode: {value}. Valid values are: transfer, remove")

class DocumentType(enum.Enum):
    INVOICE = 'invoice'
    QUOTE = 'quote'

    def __str__(self):
        return self.value

class DocumentStatus(enum.Enum):
    DRAFT = 'draft'
    PENDING = 'pending'
    PAID = 'paid'
    CANCELLED = 'cancelled'

    def __str__(self):
        return self.value


class Location(Base):
    """A shop or a depot."""
    __tablename__ = 'location'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    kind = Column(Enum(LocationKind), nullable=False, index=True)
    address = Column(String(255))
    description = Column(Text)
    manager = Column(String(100))
    phone = Column(String(50))
    email = Column(String(100))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Links where this location is the shop side / the depot side
    depot_links = relationship(
        "LocationLink",
        foreign_keys="LocationLink.shop_id",
        back_populates="shop",
        cascade="all, delete-orphan"
    )
    shop_links = relationship(
        "LocationLink",
        foreign_keys="LocationLink.depot_id",
        back_populates="depot",
        cascade="all, delete-orphan"
    )
    items = relationship("Item", back_populates="location", cascade="all, delete-orphan")

    @property
    def is_shop(self) -> bool:
        return self.kind == LocationKind.SHOP

    @property
    def is_depot(self) -> bool:
        return self.kind == LocationKind.DEPOT

    @property
    def linked_depot_ids(self):
        """Ids of the depots supplying this shop (empty for depots)."""
        return sorted(link.depot_id for link in self.depot_links)

    @property
    def linked_shop_ids(self):
        """Ids of the shops supplied by this depot (empty for shops)."""
        return sorted(link.shop_id for link in self.shop_links)

    def __repr__(self):
        return f"<Location {self.id} {self.kind.value if self.kind else '?'} {self.name!r}>"

class LocationLink(Base):
    """One edge of the shop/depot linkage graph.

    Both Location.linked_depot_ids and Location.linked_shop_ids read from
    this table, so the two directions can never disagree.
    """
    __tablename__ = 'location_link'

    id = Column(Integer, primary_key=True)
    shop_id = Column(Integer, ForeignKey('location.id', ondelete='CASCADE'), nullable=False)
    depot_id = Column(Integer, ForeignKey('location.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=utcnow)

    shop = relationship("Location", foreign_keys=[shop_id], back_populates="depot_links")
    depot = relationship("Location", foreign_keys=[depot_id], back_populates="shop_links")

    __table_args__ = (
        UniqueConstraint('shop_id', 'depot_id', name='uq_location_link_pair'),
        CheckConstraint('shop_id <> depot_id', name='ck_location_link_distinct'),
    )

class Category(Base):
    __tablename__ = 'category'

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(String(255))
    created_at = Column(DateTime, default=utcnow)

class Item(Base):
    """Stocked product held at exactly one location."""
    __tablename__ = 'item'

    id = Column(Integer, primary_key=True)
    name = Column(String(150), nullable=False)
    category = Column(String(100), nullable=False, default='')  # category name, not an id
    description = Column(Text)
    unit = Column(String(30))
    quantity = Column(Integer, nullable=False, default=0)
    min_threshold = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False)
    location_id = Column(Integer, ForeignKey('location.id', ondelete='CASCADE'), nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    location = relationship("Location", back_populates="items")

    __table_args__ = (
        # (name, category) identifies an item within a location
        UniqueConstraint('location_id', 'name', 'category', name='uq_item_location_name_category'),
        CheckConstraint('quantity >= 0', name='ck_item_quantity_non_negative'),
        CheckConstraint('min_threshold >= 0', name='ck_item_min_threshold_non_negative'),
        Index('ix_item_location_name', 'location_id', 'name'),
    )

    def __repr__(self):
        return f"<Item {self.id} {self.name!r}/{self.category!r} qty={self.quantity} @{self.location_id}>"

class TransferRecord(Base):
    """Immutable audit entry for one depot withdrawal.

    Item and location fields are copied by value so the entry stays
    readable after the item or the locations are edited or deleted.
    """
    __tablename__ = 'transfer_record'

    id = Column(Integer, primary_key=True)
    operation_id = Column(String(64), nullable=False, unique=True)
    type = Column(Enum(TransferType), nullable=False)
    item_name = Column(String(150), nullable=False)
    item_description = Column(Text, default='')
    item_category = Column(String(100))
    unit = Column(String(30))
    quantity = Column(Integer, nullable=False)
    depot_id = Column(Integer, nullable=False, index=True)
    depot_name = Column(String(100))
    shop_id = Column(Integer, index=True)
    shop_name = Column(String(100))
    user_id = Column(String(128), index=True)
    user_name = Column(String(150))
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_transfer_quantity_positive'),
    )

class SaleRecord(Base):
    """Immutable record of one sale made at a shop.

    Item, shop and user fields are copied by value, like TransferRecord.
    """
    __tablename__ = 'sale_record'

    id = Column(Integer, primary_key=True)
    operation_id = Column(String(64), nullable=False, unique=True)
    item_id = Column(Integer, index=True)
    item_name = Column(String(150), nullable=False)
    item_category = Column(String(100))
    unit = Column(String(30))
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(14, 2), nullable=False)
    shop_id = Column(Integer, nullable=False, index=True)
    shop_name = Column(String(100))
    user_id = Column(String(128), index=True)
    user_name = Column(String(150))
    sale_date = Column(DateTime, nullable=False, default=utcnow, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_sale_quantity_positive'),
        CheckConstraint('unit_price > 0', name='ck_sale_unit_price_positive'),
    )

class DocumentSequence(Base):
    """Last number issued for a (document type, year) series."""
    __tablename__ = 'document_sequence'

    document_type = Column(Enum(DocumentType), primary_key=True)
    year = Column(Integer, primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

class Document(Base):
    """Invoice or quote."""
    __tablename__ = 'document'

    id = Column(Integer, primary_key=True)
    document_type = Column(Enum(DocumentType), nullable=False)
    number = Column(String(20), nullable=False)
    location_id = Column(Integer, ForeignKey('location.id', ondelete='SET NULL'))
    customer_name = Column(String(150))
    customer_phone = Column(String(50))
    notes = Column(Text)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.PENDING)
    total_amount = Column(Numeric(14, 2), nullable=False, default=0)
    stock_deducted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    lines = relationship(
        "DocumentLine",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentLine.id"
    )

    __table_args__ = (
        UniqueConstraint('document_type', 'number', name='uq_document_type_number'),
    )

class DocumentLine(Base):
    __tablename__ = 'document_line'

    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey('document.id', ondelete='CASCADE'), nullable=False)
    item_id = Column(Integer, ForeignKey('item.id', ondelete='SET NULL'))
    item_name = Column(String(150), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    total_price = Column(Numeric(14, 2), nullable=False, default=0)

    document = relationship("Document", back_populates="lines")


@dataclass(frozen=True)
class UserRef:
    """Acting user as supplied by the identity provider."""
    id: str
    name: Optional[str] = None
    location_id: Optional[int] = None
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        return self.name or 'Utilisateur inconnu'
