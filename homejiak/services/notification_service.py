# homejiak/services/notification_service.py
import logging
import string
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from homejiak.models import (
    Notification, NotificationType, NotificationPriority, Order, OrderStatus,
    DeliveryMethod
)
from homejiak.exceptions import ValidationError
from homejiak.utils.date_utils import utcnow
from homejiak.utils.pagination import paginate

logger = logging.getLogger(__name__)

TEMPLATES = {
    NotificationType.ORDER_PLACED: (
        'New Order Received',
        'Order {orderNumber} from {customerName} - ${amount}'),
    NotificationType.ORDER_CONFIRMED: (
        'Order Confirmed',
        'Your order {orderNumber} has been confirmed.'),
    NotificationType.ORDER_PREPARING: (
        'Order Preparing',
        'Your order {orderNumber} is being prepared.'),
    NotificationType.ORDER_READY: (
        'Order Ready',
        'Your order {orderNumber} is ready for {deliveryMethod}'),
    NotificationType.ORDER_OUT_FOR_DELIVERY: (
        'Out for Delivery',
        'Your order {orderNumber} is out for delivery'),
    NotificationType.ORDER_DELIVERED: (
        'Order Delivered',
        'Your order {orderNumber} has been delivered. Enjoy your meal!'),
    NotificationType.ORDER_COMPLETED: (
        'Order Completed',
        'Order {orderNumber} completed. Thank you for your order!'),
    NotificationType.ORDER_CANCELLED: (
        'Order Cancelled',
        'Order {orderNumber} has been cancelled. {reason}'),
    NotificationType.PAYMENT_RECEIVED: (
        'Payment Received',
        'Payment of ${amount} received for order {orderNumber} via {paymentMethod}'),
    NotificationType.PAYMENT_FAILED: (
        'Payment Failed',
        'Payment of ${amount} failed for order {orderNumber} via {paymentMethod}'),
    NotificationType.REVIEW_RECEIVED: (
        'New Review',
        'You received a {rating}-star review from {customerName}'),
    NotificationType.LOW_STOCK_ALERT: (
        'Low Stock Alert',
        '{productName} is running low ({currentQuantity} left)'),
    NotificationType.CUSTOM_MESSAGE: (
        'Message',
        '{message}'),
    NotificationType.SYSTEM: (
        'System Notice',
        '{message}'),
}

# Customer-facing notification for each order status
STATUS_NOTIFICATION_TYPES = {
    OrderStatus.CONFIRMED: NotificationType.ORDER_CONFIRMED,
    OrderStatus.PREPARING: NotificationType.ORDER_PREPARING,
    OrderStatus.READY: NotificationType.ORDER_READY,
    OrderStatus.OUT_FOR_DELIVERY: NotificationType.ORDER_OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: NotificationType.ORDER_DELIVERED,
    OrderStatus.COMPLETED: NotificationType.ORDER_COMPLETED,
    OrderStatus.CANCELLED: NotificationType.ORDER_CANCELLED,
}


class _BlankDict(dict):
    def __missing__(self, key):
        return ''


def render(template: str, data: Dict) -> str:
    """Fill ``{placeholder}`` fields, leaving unknown ones blank."""
    return string.Formatter().vformat(template, (), _BlankDict(data)).strip()


def order_message(status, order: Order, **extra) -> Optional[str]:
    """Plain-text customer message for an order status change.

    Args:
        status: OrderStatus or status name
        order: Order the message is about
        **extra: Optional ``reason``, ``driver_name``, ``driver_phone``

    Returns:
        Message text, or None for statuses that are not announced
    """
    status = OrderStatus.from_string(status)
    number = order.order_number

    if status == OrderStatus.CONFIRMED:
        return f"Order #{number} is confirmed and being prepared."
    if status == OrderStatus.PREPARING:
        return f"Order #{number} is being prepared with love!"
    if status == OrderStatus.READY:
        if order.delivery_method == DeliveryMethod.DELIVERY:
            return f"Order #{number} is ready and will be out for delivery soon!"
        return f"Order #{number} is ready for pickup! Please collect it at your earliest convenience."
    if status == OrderStatus.OUT_FOR_DELIVERY:
        message = f"Order #{number} is out for delivery!"
        if extra.get('driver_name'):
            message += f" Driver: {extra['driver_name']}"
        if extra.get('driver_phone'):
            message += f" ({extra['driver_phone']})"
        return message
    if status == OrderStatus.DELIVERED:
        return f"Order #{number} has been delivered. Enjoy your meal!"
    if status == OrderStatus.COMPLETED:
        return f"Order #{number} completed. Thank you for your order!"
    if status == OrderStatus.CANCELLED:
        reason = extra.get('reason') or order.cancellation_reason
        message = f"Order #{number} has been cancelled."
        if reason:
            message += f" Reason: {reason}"
        return message
    return None


class NotificationService:
    """Service for in-app merchant and customer notifications."""

    def __init__(self, session: Session):
        """Initialize the notification service.

        Args:
            session: Database session
        """
        self.session = session

    def create_notification(self, type: NotificationType, merchant_id: Optional[str] = None,
                            customer_id: Optional[str] = None, order_id: Optional[str] = None,
                            data: Optional[Dict] = None, priority: NotificationPriority = NotificationPriority.NORMAL,
                            title: Optional[str] = None, message: Optional[str] = None) -> Notification:
        """Add a notification to the session (the caller commits).

        Args:
            type: Notification type
            merchant_id: Merchant recipient
            customer_id: Customer recipient
            order_id: Related order
            data: Template values and extra payload
            priority: Notification priority
            title: Override the template title
            message: Override the template message

        Returns:
            Notification object
        """
        if not merchant_id and not customer_id:
            raise ValidationError("Notification requires a merchant_id or customer_id")

        data = dict(data or {})
        template_title, template_message = TEMPLATES.get(type, (str(type), 'Event: {type}'))
        payload = dict(data, type=type.value)
        if order_id:
            payload['orderId'] = order_id

        notification = Notification(
            merchant_id=merchant_id,
            customer_id=customer_id,
            type=type,
            priority=priority,
            title=title or template_title,
            message=message or render(template_message, payload),
            data=payload,
        )
        self.session.add(notification)
        self.session.flush()

        logger.info(f"Notification {type.value} created for {merchant_id or customer_id}")
        return notification

    def notify_order_status(self, order: Order, status: OrderStatus, **extra) -> Optional[Notification]:
        """Tell the order's customer about a status change.

        Returns:
            Notification object, or None when there is nobody to tell
        """
        notification_type = STATUS_NOTIFICATION_TYPES.get(status)
        if notification_type is None or not order.customer_id:
            return None

        return self.create_notification(
            notification_type,
            customer_id=order.customer_id,
            order_id=order.id,
            data={
                'orderNumber': order.order_number,
                'deliveryMethod': order.delivery_method.value.lower(),
                'reason': extra.get('reason', ''),
            },
            message=order_message(status, order, **extra),
            priority=NotificationPriority.HIGH if status == OrderStatus.READY else NotificationPriority.NORMAL,
        )

    def _recipient_query(self, merchant_id: Optional[str], customer_id: Optional[str]):
        if not merchant_id and not customer_id:
            raise ValidationError("A merchant_id or customer_id is required")
        query = self.session.query(Notification)
        if merchant_id:
            query = query.filter(Notification.merchant_id == merchant_id)
        if customer_id:
            query = query.filter(Notification.customer_id == customer_id)
        return query

    def list_notifications(self, merchant_id: Optional[str] = None, customer_id: Optional[str] = None,
                           unread_only: bool = False, page: int = 1, limit: int = 20) -> Dict:
        query = self._recipient_query(merchant_id, customer_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return paginate(
            query, page, limit, 'created_at', 'desc',
            allowed_sort={'created_at': Notification.created_at},
            serializer=lambda n: n.to_dict()
        )

    def mark_read(self, notification_ids: Iterable[str], merchant_id: Optional[str] = None,
                  customer_id: Optional[str] = None) -> int:
        """Mark notifications read.

        Returns:
            Number of notifications updated
        """
        ids = list(notification_ids)
        if not ids:
            return 0
        notifications = self._recipient_query(merchant_id, customer_id) \
            .filter(Notification.id.in_(ids), Notification.is_read.is_(False)).all()
        now = utcnow()
        for notification in notifications:
            notification.is_read = True
            notification.read_at = now
        self.session.commit()
        return len(notifications)

    def mark_all_read(self, merchant_id: Optional[str] = None, customer_id: Optional[str] = None) -> int:
        unread = self._recipient_query(merchant_id, customer_id) \
            .filter(Notification.is_read.is_(False)).all()
        return self.mark_read([n.id for n in unread], merchant_id, customer_id)

    def unread_count(self, merchant_id: Optional[str] = None, customer_id: Optional[str] = None) -> int:
        return self._recipient_query(merchant_id, customer_id) \
            .filter(Notification.is_read.is_(False)).count()

    def recent(self, merchant_id: str, limit: int = 5) -> List[Notification]:
        return self._recipient_query(merchant_id, None) \
            .order_by(Notification.created_at.desc()).limit(limit).all()
