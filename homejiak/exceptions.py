import logging

from sqlalchemy.exc import IntegrityError, NoResultFound

logger = logging.getLogger(__name__)


class HomejiakError(Exception):
    """Base exception for HomeJiak marketplace errors."""

    default_message = "An error occurred in the HomeJiak marketplace"
    default_code = "INTERNAL_SERVER_ERROR"
    http_status = 500

    def __init__(self, message=None, code=None, details=None):
        """Initialize the exception.

        Args:
            message: Error message
            code: Error code (RPC style, e.g. ``NOT_FOUND``)
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
            'code': self.code,
        }

        if self.details:
            error_dict['details'] = self.details

        return error_dict


class ConfigError(HomejiakError):
    """Exception raised for configuration errors."""
    default_message = "Configuration error"


class DatabaseError(HomejiakError):
    """Exception raised for database-related errors."""
    default_message = "Database error"


class ValidationError(HomejiakError):
    """Exception raised for data validation errors."""
    default_message = "Validation error"
    default_code = "BAD_REQUEST"
    http_status = 400


class NotFoundError(HomejiakError):
    """Exception raised when a requested resource is not found."""
    default_message = "Resource not found"
    default_code = "NOT_FOUND"
    http_status = 404


class UnauthorizedError(HomejiakError):
    """Exception raised when no valid session is present."""
    default_message = "Authentication required"
    default_code = "UNAUTHORIZED"
    http_status = 401


class ForbiddenError(HomejiakError):
    """Exception raised when the session may not access a resource."""
    default_message = "Access denied"
    default_code = "FORBIDDEN"
    http_status = 403


class ConflictError(HomejiakError):
    """Exception raised when a record already exists."""
    default_message = "A record with this information already exists"
    default_code = "CONFLICT"
    http_status = 409


class RateLimitError(HomejiakError):
    """Exception raised when a caller exceeds its request budget."""
    default_message = "Rate limit exceeded"
    default_code = "TOO_MANY_REQUESTS"
    http_status = 429


class MethodNotSupportedError(HomejiakError):
    """Exception raised when a procedure is called with the wrong HTTP method."""
    default_message = "Method not supported"
    default_code = "METHOD_NOT_SUPPORTED"
    http_status = 405


class InventoryError(ValidationError):
    """Exception raised for stock reservation errors."""
    default_message = "Inventory error"


class OrderError(ValidationError):
    """Exception raised for order-related errors."""
    default_message = "Order error"


class CheckoutError(ValidationError):
    """Exception raised for checkout errors."""
    default_message = "Checkout error"


class PaymentError(ValidationError):
    """Exception raised for payment errors."""
    default_message = "Payment error"


class StorageError(HomejiakError):
    """Exception raised for object storage errors."""
    default_message = "Storage error"


def handle_database_error(error):
    """Translate a database exception into a HomejiakError and raise it.

    Args:
        error: Exception raised by SQLAlchemy or a service

    Raises:
        HomejiakError subclass matching the error
    """
    if isinstance(error, HomejiakError):
        raise error

    if isinstance(error, IntegrityError):
        text = str(error.orig).lower() if error.orig is not None else str(error).lower()
        if 'unique' in text or 'duplicate' in text:
            raise ConflictError() from error
        if 'foreign key' in text:
            raise ValidationError("Invalid reference provided") from error
        raise ValidationError(str(error.orig)) from error

    if isinstance(error, NoResultFound):
        raise NotFoundError("Record not found") from error

    logger.error(f"Unhandled database error: {error}")
    raise DatabaseError("An unexpected error occurred") from error
