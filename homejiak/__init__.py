from .config import config
from .db import db, session_scope
from .logging_setup import logger, get_logger, log_exception
from .exceptions import (
    HomejiakError, ValidationError, NotFoundError, UnauthorizedError,
    ForbiddenError, ConflictError, InventoryError, OrderError,
    CheckoutError, PaymentError
)

__version__ = '0.1.0'

__all__ = [
    'config',
    'db',
    'session_scope',
    'logger',
    'get_logger',
    'log_exception',
    'HomejiakError',
    'ValidationError',
    'NotFoundError',
    'UnauthorizedError',
    'ForbiddenError',
    'ConflictError',
    'InventoryError',
    'OrderError',
    'CheckoutError',
    'PaymentError'
]
