class StockManagerError(Exception):
    """Base exception for Stock Manager errors."""

    default_message = "An error occurred in the Stock Manager"
    default_code = None
    retryable = False

    def __init__(self, message=None, code=None, details=None):
        """Initialize the exception.

        Args:
            message: Error message
            code: Error code
            details: Additional error details
        """
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        """String representation of the error."""
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a dictionary."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict


class DatabaseError(StockManagerError):
    """Exception raised for database-related errors."""
    default_message = "Database error"
    default_code = "DATABASE_ERROR"


class ValidationError(StockManagerError):
    """Exception raised for data validation errors."""
    default_message = "Validation error"
    default_code = "VALIDATION_ERROR"


class NotFoundError(StockManagerError):
    """Exception raised when a requested resource is not found."""
    default_message = "Resource not found"
    default_code = "NOT_FOUND"


class LinkageError(StockManagerError):
    """Exception raised for invalid shop/depot link requests."""
    default_message = "Invalid shop/depot link"
    default_code = "INVALID_LINK"


class TransferError(StockManagerError):
    """Base exception for stock withdrawal errors."""
    default_message = "Withdrawal failed"


class InvalidQuantityError(TransferError):
    """Requested quantity is not positive or exceeds the available stock."""
    default_message = "Invalid quantity"
    default_code = "INVALID_QUANTITY"


class MissingDestinationError(TransferError):
    """Transfer requested without a destination shop."""
    default_message = "Destination shop is required for a transfer"
    default_code = "MISSING_DESTINATION"


class ItemNotFoundError(TransferError, NotFoundError):
    """The depot item vanished or does not belong to the depot."""
    default_message = "Item not found"
    default_code = "ITEM_NOT_FOUND"


class PermissionDeniedError(TransferError):
    """The acting user or the linkage graph does not allow the operation."""
    default_message = "Permission denied"
    default_code = "PERMISSION_DENIED"


class UnavailableError(TransferError):
    """The backing store could not be reached. Safe to retry."""
    default_message = "Service temporarily unavailable"
    default_code = "UNAVAILABLE"
    retryable = True


class SequenceError(StockManagerError):
    """Base exception for document numbering errors."""
    default_message = "Document numbering error"


class InvalidDocumentTypeError(SequenceError):
    """Exception raised for unknown document types."""
    default_message = "Invalid document type, use 'invoice' or 'quote'"
    default_code = "INVALID_DOCUMENT_TYPE"


class SequenceUnavailableError(SequenceError):
    """The counter could not be read or incremented."""
    default_message = "Document sequence unavailable"
    default_code = "SEQUENCE_UNAVAILABLE"
    retryable = True


class DocumentError(StockManagerError):
    """Exception raised for invoice and quote errors."""
    default_message = "Document error"
    default_code = "DOCUMENT_ERROR"
