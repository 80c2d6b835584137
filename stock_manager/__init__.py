from .config import config
from .db import db, session_scope
from .logging_setup import logger, get_logger
from .exceptions import (
    StockManagerError, ValidationError, NotFoundError, TransferError,
    SequenceError, DocumentError
)

__all__ = [
    'config',
    'db',
    'session_scope',
    'logger',
    'get_logger',
    'StockManagerError',
    'ValidationError',
    'NotFoundError',
    'TransferError',
    'SequenceError',
    'DocumentError'
]
