from .location_service import LocationService
from .item_service import ItemService
from .transfer_service import TransferService
from .numbering_service import NumberingService
from .document_service import DocumentService
from .sale_service import SaleService

__all__ = [
    'LocationService',
    'ItemService',
    'TransferService',
    'NumberingService',
    'DocumentService',
    'SaleService'
]
