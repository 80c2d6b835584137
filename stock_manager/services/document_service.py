# stock_manager/services/document_service.py
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stock_manager.models import (
    Document, DocumentLine, DocumentStatus, DocumentType, Item, Location
)
from stock_manager.core.numbering import normalize_document_type
from stock_manager.exceptions import (
    DocumentError, NotFoundError, StockManagerError, ValidationError
)
from stock_manager.services.base import BaseService, translate_db_error
from stock_manager.services.numbering_service import NumberingService
from stock_manager.utils.validation import to_decimal

logger = logging.getLogger(__name__)


class DocumentService(BaseService):
    """Invoices and quotes.

    Paying an invoice deducts the stock of every line at once; cancelling
    it puts the stock back. Quotes never touch stock.
    """

    def __init__(self, session: Session, numbering: Optional[NumberingService] = None):
        """Initialize the document service.

        Args:
            session: Database session
            numbering: Sequence generator (one bound to the same session when None)
        """
        super().__init__(session)
        self.numbering = numbering or NumberingService(session)

    def get(self, document_id: int) -> Optional[Document]:
        return self.session.get(Document, document_id)

    def require_document(self, document_id: int) -> Document:
        document = self.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", details={'document_id': document_id})
        return document

    def get_document(self, document_type: Union[str, DocumentType], number: str) -> Optional[Document]:
        """Get a document by type and number, e.g. ('invoice', '2025-007')."""
        return self.session.query(Document).filter(
            Document.document_type == normalize_document_type(document_type),
            Document.number == number
        ).first()

    def list_documents(
        self,
        document_type: Optional[Union[str, DocumentType]] = None,
        location_id: Optional[int] = None,
        status: Optional[Union[str, DocumentStatus]] = None
    ) -> List[Document]:
        """List documents, newest first."""
        query = self.session.query(Document)
        if document_type is not None:
            query = query.filter(Document.document_type == normalize_document_type(document_type))
        if location_id is not None:
            query = query.filter(Document.location_id == location_id)
        if status is not None:
            query = query.filter(Document.status == self._parse_status(status))
        return query.order_by(Document.created_at.desc(), Document.id.desc()).all()

    def _parse_status(self, status: Union[str, DocumentStatus]) -> DocumentStatus:
        if isinstance(status, DocumentStatus):
            return status
        try:
            return DocumentStatus(str(status).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid document status {status!r}",
                details={'status': status, 'valid': [s.value for s in DocumentStatus]}
            )

    def _build_lines(self, lines: Iterable[Dict]) -> List[DocumentLine]:
        """Turn line dictionaries into DocumentLine rows.

        Each line needs a quantity and either an item_id or an item_name;
        unit_price defaults to the item's price.
        """
        built = []
        errors = {}

        for index, line in enumerate(lines or []):
            item = None
            item_id = line.get('item_id')
            if item_id is not None:
                item = self.session.get(Item, item_id)
                if item is None:
                    errors[f'lines[{index}].item_id'] = f"Item {item_id} not found"
                    continue

            name = line.get('item_name') or (item.name if item is not None else None)
            if not name:
                errors[f'lines[{index}].item_name'] = 'Item name is required'
                continue

            quantity = line.get('quantity')
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                errors[f'lines[{index}].quantity'] = 'Quantity must be a positive whole number'
                continue

            unit_price = line.get('unit_price')
            if unit_price is None:
                unit_price = item.price if item is not None else None
            unit_price = to_decimal(unit_price)
            if unit_price is None or unit_price < 0:
                errors[f'lines[{index}].unit_price'] = 'Unit price must be a number greater than or equal to 0'
                continue

            built.append(DocumentLine(
                item_id=item.id if item is not None else None,
                item_name=name,
                quantity=quantity,
                unit_price=unit_price,
                total_price=unit_price * quantity
            ))

        if errors:
            raise ValidationError("Invalid document lines", details=errors)
        if not built:
            raise ValidationError("A document needs at least one line", details={'lines': 'At least one line is required'})
        return built

    def create_document(
        self,
        document_type: Union[str, DocumentType],
        location_id: Optional[int],
        lines: Iterable[Dict],
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
        notes: Optional[str] = None,
        status: Union[str, DocumentStatus] = DocumentStatus.PENDING,
        year: Optional[int] = None
    ) -> Document:
        """Create an invoice or a quote with the next number of its series.

        Args:
            document_type: 'invoice' or 'quote'
            location_id: Issuing shop
            lines: Line dictionaries (item_id, item_name, quantity, unit_price)
            customer_name: Optional customer name
            customer_phone: Optional customer phone
            notes: Optional free text
            status: Initial status; an invoice created as 'paid' deducts its stock
            year: Year of the number series (current year when None)

        Returns:
            The created document
        """
        document_type = normalize_document_type(document_type)
        status = self._parse_status(status)
        if status == DocumentStatus.CANCELLED:
            raise ValidationError("A document cannot be created as cancelled")
        if document_type == DocumentType.QUOTE and status == DocumentStatus.PAID:
            raise DocumentError("Quotes cannot be paid, convert them to an invoice first")

        if location_id is not None and self.session.get(Location, location_id) is None:
            raise NotFoundError(f"Location {location_id} not found", details={'location_id': location_id})

        document_lines = self._build_lines(lines)
        number = self.numbering.next_number(document_type, year, commit=False)

        document = Document(
            document_type=document_type,
            number=number,
            location_id=location_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
            notes=notes,
            status=status,
            total_amount=sum((line.total_price for line in document_lines), Decimal('0')),
            lines=document_lines
        )
        self.session.add(document)

        try:
            if status == DocumentStatus.PAID:
                self.session.flush()
                self._deduct_stock(document)
            self.session.commit()
        except StockManagerError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error creating {document_type.value} {number}: {str(e)}")
            raise translate_db_error(e, f"create {document_type.value} {number}")

        logger.info(
            f"Created {document_type.value} {number} ({len(document_lines)} lines, "
            f"total {document.total_amount}, status {status.value})"
        )
        return document

    def check_stock_availability(self, document: Document) -> List[Dict]:
        """Lines whose item is missing or does not have enough stock.

        Returns:
            List of warnings, empty when every line can be served
        """
        warnings = []
        for line in document.lines:
            item = self.session.get(Item, line.item_id) if line.item_id is not None else None
            if item is None:
                warnings.append({
                    'item_id': line.item_id,
                    'item_name': line.item_name,
                    'requested': line.quantity,
                    'available': 0,
                    'reason': 'missing'
                })
            elif item.quantity < line.quantity:
                warnings.append({
                    'item_id': item.id,
                    'item_name': line.item_name,
                    'requested': line.quantity,
                    'available': item.quantity,
                    'reason': 'insufficient'
                })
        return warnings

    def _deduct_stock(self, document: Document):
        """Take the stock of every line, or none of it."""
        locked = {}
        shortages = []
        for line in document.lines:
            item = None
            if line.item_id is not None:
                item = locked.get(line.item_id) or self.session.query(Item).filter(
                    Item.id == line.item_id
                ).with_for_update().populate_existing().one_or_none()
            if item is None:
                shortages.append({'item_name': line.item_name, 'requested': line.quantity, 'available': 0})
                continue
            locked[item.id] = item

        if not shortages:
            needed = {}
            for line in document.lines:
                needed[line.item_id] = needed.get(line.item_id, 0) + line.quantity
            for item_id, quantity in needed.items():
                item = locked[item_id]
                if item.quantity < quantity:
                    shortages.append({'item_name': item.name, 'requested': quantity, 'available': item.quantity})

        if shortages:
            raise DocumentError(
                f"Not enough stock to pay {document.document_type.value} {document.number}",
                details={'shortages': shortages}
            )

        for line in document.lines:
            locked[line.item_id].quantity -= line.quantity

        document.stock_deducted = True
        logger.debug(f"Deducted stock for {document.number}: {len(document.lines)} lines")

    def mark_paid(self, document_id: int) -> Document:
        """Mark an invoice as paid and deduct its stock.

        Raises:
            DocumentError: Quote, cancelled invoice, or not enough stock
        """
        document = self.require_document(document_id)

        if document.document_type != DocumentType.INVOICE:
            raise DocumentError(f"Quote {document.number} cannot be paid, only invoices can")
        if document.status == DocumentStatus.CANCELLED:
            raise DocumentError(f"Invoice {document.number} is cancelled")
        if document.status == DocumentStatus.PAID and document.stock_deducted:
            return document

        try:
            if not document.stock_deducted:
                self._deduct_stock(document)
            document.status = DocumentStatus.PAID
            self.session.commit()
        except StockManagerError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Error paying invoice {document.number}: {str(e)}")
            raise translate_db_error(e, f"pay invoice {document.number}")

        logger.info(f"Invoice {document.number} paid, stock deducted")
        return document

    def cancel(self, document_id: int) -> Document:
        """Cancel a document, restoring any stock it deducted.

        Lines whose item has since been deleted cannot be restored and are
        skipped.
        """
        document = self.require_document(document_id)
        if document.status == DocumentStatus.CANCELLED:
            return document

        restored = 0
        if document.stock_deducted:
            for line in document.lines:
                item = self.session.get(Item, line.item_id) if line.item_id is not None else None
                if item is None:
                    logger.warning(
                        f"Cannot restore {line.quantity} x {line.item_name} for {document.number}: item no longer exists"
                    )
                    continue
                item.quantity += line.quantity
                restored += 1
            document.stock_deducted = False

        document.status = DocumentStatus.CANCELLED
        self._commit(f"cancel {document.document_type.value} {document.number}")

        logger.info(f"Cancelled {document.document_type.value} {document.number}, {restored} line(s) restored")
        return document
