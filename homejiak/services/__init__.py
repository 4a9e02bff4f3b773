from .inventory_service import InventoryService
from .notification_service import NotificationService
from .order_service import OrderService
from .checkout_service import CheckoutService
from .payment_service import PaymentService
from .product_service import ProductService
from .modifier_service import ModifierService
from .merchant_service import MerchantService
from .analytics_service import AnalyticsService
from .ingredient_service import IngredientService
from .auth_service import AuthService, AuthUser
from .storage_service import StorageService
from .order_stream import OrderStreamPoller, OrderStreamClient, ReconnectBackoff, format_sse

__all__ = [
    'InventoryService',
    'NotificationService',
    'OrderService',
    'CheckoutService',
    'PaymentService',
    'ProductService',
    'ModifierService',
    'MerchantService',
    'AnalyticsService',
    'IngredientService',
    'AuthService',
    'AuthUser',
    'StorageService',
    'OrderStreamPoller',
    'OrderStreamClient',
    'ReconnectBackoff',
    'format_sse'
]
