# homejiak/services/order_service.py
import csv
import io
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload

from homejiak.models import (
    Order, OrderEvent, OrderStatus, PaymentStatus, Merchant
)
from homejiak.exceptions import NotFoundError, OrderError, ValidationError
from homejiak.services.inventory_service import InventoryService
from homejiak.services.notification_service import NotificationService
from homejiak.utils.date_utils import date_bounds, singapore_day_bounds, to_singapore, utcnow
from homejiak.utils.pagination import paginate
from homejiak.utils.validation import money, normalize_phone

logger = logging.getLogger(__name__)

PICKUP_FLOW = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.CONFIRMED: (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    OrderStatus.PREPARING: (OrderStatus.READY, OrderStatus.CANCELLED),
    OrderStatus.READY: (OrderStatus.COMPLETED, OrderStatus.CANCELLED),
    OrderStatus.COMPLETED: (OrderStatus.REFUNDED,),
    OrderStatus.CANCELLED: (),
    OrderStatus.REFUNDED: (),
    OrderStatus.OUT_FOR_DELIVERY: (),
    OrderStatus.DELIVERED: (),
}

DELIVERY_FLOW = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.CONFIRMED: (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    OrderStatus.PREPARING: (OrderStatus.READY, OrderStatus.CANCELLED),
    OrderStatus.READY: (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED),
    OrderStatus.OUT_FOR_DELIVERY: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (OrderStatus.COMPLETED, OrderStatus.REFUNDED),
    OrderStatus.COMPLETED: (OrderStatus.REFUNDED,),
    OrderStatus.CANCELLED: (),
    OrderStatus.REFUNDED: (),
}

# Column stamped when an order enters a status
STATUS_TIMESTAMPS = {
    OrderStatus.CONFIRMED: 'confirmed_at',
    OrderStatus.PREPARING: 'prepared_at',
    OrderStatus.READY: 'ready_at',
    OrderStatus.DELIVERED: 'delivered_at',
    OrderStatus.COMPLETED: 'completed_at',
    OrderStatus.CANCELLED: 'cancelled_at',
}

ACTIVE_STATUSES = (
    OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY, OrderStatus.OUT_FOR_DELIVERY
)

SORT_FIELDS = {
    'created_at': Order.created_at,
    'updated_at': Order.updated_at,
    'status': Order.status,
    'total': Order.total,
    'order_number': Order.order_number,
}

MAX_BULK_ORDERS = 100
MAX_EXPORT_ROWS = 1000
MAX_PRINT_ORDERS = 50

CSV_COLUMNS = [
    'Order Number', 'Date', 'Time', 'Status', 'Customer Name', 'Customer Phone',
    'Customer Email', 'Delivery Method', 'Delivery Address', 'Items', 'Subtotal',
    'Delivery Fee', 'Total', 'Payment Method', 'Payment Status', 'Notes',
]


def can_update_order_status(current: OrderStatus, new: OrderStatus, is_pickup: bool) -> bool:
    """Check a status change against the pickup or delivery flow.

    Args:
        current: Current order status
        new: Requested order status
        is_pickup: True for pickup orders

    Returns:
        True if the transition is allowed
    """
    flow = PICKUP_FLOW if is_pickup else DELIVERY_FLOW
    return new in flow.get(current, ())


def next_statuses(order: Order) -> List[OrderStatus]:
    """Statuses an order may move to next."""
    flow = PICKUP_FLOW if order.is_pickup else DELIVERY_FLOW
    return list(flow.get(order.status, ()))


class OrderService:
    """Service for merchant order management."""

    def __init__(self, session: Session):
        """Initialize the order service.

        Args:
            session: Database session
        """
        self.session = session
        self.inventory = InventoryService(session)
        self.notifications = NotificationService(session)

    def _filtered_query(self, merchant_id: str, status=None, search: Optional[str] = None,
                        date_from=None, date_to=None):
        query = self.session.query(Order).filter(Order.merchant_id == merchant_id)

        if status:
            if isinstance(status, (list, tuple, set)):
                query = query.filter(Order.status.in_([OrderStatus.from_string(s) for s in status]))
            else:
                query = query.filter(Order.status == OrderStatus.from_string(status))

        if search and search.strip():
            term = f"%{search.strip()}%"
            query = query.filter(or_(
                Order.order_number.ilike(term),
                Order.customer_name.ilike(term),
                Order.customer_phone.contains(search.strip()),
            ))

        start, end = date_bounds(date_from, date_to)
        if start is not None:
            query = query.filter(Order.created_at >= start)
        if end is not None:
            query = query.filter(Order.created_at < end)

        return query

    def list_orders(self, merchant_id: str, status=None, search: Optional[str] = None,
                    date_from=None, date_to=None, page: int = 1, limit: int = 20,
                    sort_by: Optional[str] = None, sort_order: Optional[str] = None) -> Dict:
        """List a merchant's orders with filters and pagination.

        Args:
            merchant_id: Merchant ID
            status: Status name or list of names
            search: Matches order number, customer name (case-insensitive) or phone
            date_from: Earliest creation date (ISO)
            date_to: Latest creation date (ISO); a bare date includes that whole day
            page: Page number
            limit: Page size
            sort_by: One of created_at, updated_at, status, total, order_number;
                anything else falls back to created_at
            sort_order: asc or desc

        Returns:
            Dictionary with items and pagination
        """
        query = self._filtered_query(merchant_id, status, search, date_from, date_to) \
            .options(selectinload(Order.items), selectinload(Order.payment))
        if sort_by not in SORT_FIELDS:
            sort_by = 'created_at'
        return paginate(
            query, page, limit, sort_by, sort_order,
            allowed_sort=SORT_FIELDS,
            serializer=lambda order: order.to_dict(include_items=True)
        )

    def list_customer_orders(self, customer_id: str, page: int = 1, limit: int = 20) -> Dict:
        query = self.session.query(Order).filter(Order.customer_id == customer_id)
        return paginate(
            query, page, limit, 'created_at', 'desc',
            allowed_sort=SORT_FIELDS,
            serializer=lambda order: dict(order.to_summary_dict(), merchant_name=order.merchant.business_name)
        )

    def get_order(self, merchant_id: str, order_id: str) -> Order:
        """Get one of a merchant's orders.

        Raises:
            NotFoundError if the order does not exist or belongs to another merchant
        """
        order = self.session.query(Order) \
            .filter(Order.id == order_id, Order.merchant_id == merchant_id) \
            .first()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def apply_status(self, order: Order, status: OrderStatus, notes: Optional[str] = None,
                      reason: Optional[str] = None, actor: Optional[str] = None, bulk: bool = False,
                      event: Optional[str] = None):
        """Set the status, its timestamp and side effects; the caller validates and commits."""
        previous = order.status
        now = utcnow()

        order.status = status
        timestamp_field = STATUS_TIMESTAMPS.get(status)
        if timestamp_field:
            setattr(order, timestamp_field, now)
        order.updated_at = now

        if status == OrderStatus.CANCELLED:
            order.cancellation_reason = reason or notes or order.cancellation_reason
            self.inventory.release_stock(order, commit=False)
            if order.payment_status in (PaymentStatus.PENDING, PaymentStatus.PROCESSING):
                order.payment_status = PaymentStatus.CANCELLED
                if order.payment is not None:
                    order.payment.status = PaymentStatus.CANCELLED
        elif status == OrderStatus.REFUNDED:
            order.payment_status = PaymentStatus.REFUNDED
            if order.payment is not None:
                order.payment.status = PaymentStatus.REFUNDED

        self.session.add(OrderEvent(
            order_id=order.id,
            event=event or f"STATUS_CHANGED_FROM_{previous.value}_TO_{status.value}",
            data={
                'from': previous.value,
                'to': status.value,
                'notes': notes or ('Bulk update' if bulk else None),
                'bulk': bulk,
            },
            created_by=actor,
        ))
        self.notifications.notify_order_status(order, status, reason=order.cancellation_reason)

    def update_status(self, merchant_id: str, order_id: str, status: Union[str, OrderStatus],
                      notes: Optional[str] = None, reason: Optional[str] = None,
                      actor: Optional[str] = None) -> Order:
        """Move an order to a new status.

        Cancelling returns the order's reserved stock.

        Args:
            merchant_id: Merchant ID
            order_id: Order ID
            status: Target status
            notes: Note stored on the order event
            reason: Cancellation reason
            actor: User performing the change

        Returns:
            Updated order

        Raises:
            OrderError if the transition is not allowed
        """
        status = OrderStatus.from_string(status)
        try:
            order = self.session.query(Order) \
                .filter(Order.id == order_id, Order.merchant_id == merchant_id) \
                .with_for_update() \
                .first()
            if order is None:
                raise NotFoundError("Order not found")

            if not can_update_order_status(order.status, status, order.is_pickup):
                raise OrderError(f"Invalid status transition: {order.status.value} -> {status.value}")

            self.apply_status(order, status, notes=notes, reason=reason, actor=actor)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Order {order.order_number} moved to {status.value}")
        return order

    def bulk_update_status(self, merchant_id: str, order_ids: Iterable[str],
                           status: Union[str, OrderStatus], notes: Optional[str] = None,
                           actor: Optional[str] = None) -> Dict[str, int]:
        """Apply a status change to many orders at once.

        Orders whose current status does not allow the change are skipped.

        Args:
            merchant_id: Merchant ID
            order_ids: Up to 100 order IDs
            status: Target status
            notes: Note stored on each order event
            actor: User performing the change

        Returns:
            Dictionary with success_count, total_count and failed_count
        """
        order_ids = list(dict.fromkeys(order_ids))
        if not order_ids:
            raise ValidationError("At least one order is required")
        if len(order_ids) > MAX_BULK_ORDERS:
            raise ValidationError(f"Cannot update more than {MAX_BULK_ORDERS} orders at once")
        status = OrderStatus.from_string(status)

        try:
            orders = self.session.query(Order) \
                .filter(Order.id.in_(order_ids), Order.merchant_id == merchant_id) \
                .with_for_update() \
                .all()
            if not orders:
                raise NotFoundError("No valid orders found")

            valid = [o for o in orders if can_update_order_status(o.status, status, o.is_pickup)]
            if not valid:
                raise OrderError("No orders can be transitioned to the selected status")

            for order in valid:
                self.apply_status(order, status, notes=notes, actor=actor, bulk=True)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Bulk moved {len(valid)}/{len(orders)} orders to {status.value}")
        return {
            'success_count': len(valid),
            'total_count': len(orders),
            'failed_count': len(orders) - len(valid),
        }

    def export_csv(self, merchant_id: str, order_ids: Optional[List[str]] = None,
                   filters: Optional[Dict] = None) -> Dict:
        """Export orders to CSV.

        Args:
            merchant_id: Merchant ID
            order_ids: Explicit orders to export; takes precedence over filters
            filters: Optional status (list), search, date_from, date_to

        Returns:
            Dictionary with ``csv`` text and row ``count``
        """
        if order_ids:
            query = self.session.query(Order).filter(
                Order.merchant_id == merchant_id, Order.id.in_(order_ids))
        else:
            filters = filters or {}
            query = self._filtered_query(
                merchant_id,
                status=filters.get('status'),
                search=filters.get('search'),
                date_from=filters.get('date_from'),
                date_to=filters.get('date_to'),
            )

        orders = query.options(selectinload(Order.items), selectinload(Order.address)) \
            .order_by(Order.created_at.desc()) \
            .limit(MAX_EXPORT_ROWS) \
            .all()
        if not orders:
            raise NotFoundError("No orders found to export")

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(CSV_COLUMNS)
        for order in orders:
            writer.writerow(self._csv_row(order))

        return {'csv': output.getvalue(), 'count': len(orders)}

    def _csv_row(self, order: Order) -> List[str]:
        created = to_singapore(order.created_at)
        if order.address is not None:
            address = order.address.format()
        else:
            address = order.delivery_address or ''
        items = '; '.join(
            f"{item.product_name} x{item.quantity}" + (f" ({item.notes})" if item.notes else '')
            for item in order.items
        )
        return [
            order.order_number,
            created.strftime('%d/%m/%Y'),
            created.strftime('%I:%M:%S %p').lower(),
            order.status.value,
            order.customer_name or '',
            order.customer_phone or '',
            order.customer_email or '',
            order.delivery_method.value,
            address,
            items,
            f"${money(order.subtotal)}",
            f"${money(order.delivery_fee)}",
            f"${money(order.total)}",
            order.payment_method.value if order.payment_method else '',
            order.payment_status.value if order.payment_status else '',
            order.delivery_notes or '',
        ]

    def get_print_data(self, merchant_id: str, order_ids: List[str]) -> List[Dict]:
        """Orders with merchant header details for kitchen tickets.

        Args:
            merchant_id: Merchant ID
            order_ids: Between 1 and 50 order IDs

        Returns:
            List of order dictionaries, newest first
        """
        if not order_ids:
            raise ValidationError("At least one order is required")
        if len(order_ids) > MAX_PRINT_ORDERS:
            raise ValidationError(f"Cannot print more than {MAX_PRINT_ORDERS} orders at once")

        orders = self.session.query(Order) \
            .filter(Order.id.in_(order_ids), Order.merchant_id == merchant_id) \
            .options(selectinload(Order.items)) \
            .order_by(Order.created_at.desc()) \
            .all()
        if not orders:
            raise NotFoundError("No orders found")

        merchant = orders[0].merchant
        result = []
        for order in orders:
            data = order.to_dict(include_items=True)
            data['merchant'] = {
                'business_name': merchant.business_name,
                'phone': merchant.phone,
                'address': merchant.address,
            }
            result.append(data)
        return result

    def track_order(self, order_number: str, phone: str) -> Dict:
        """Public order tracker.

        The caller must know both the order number and the phone number used
        at checkout.

        Raises:
            NotFoundError if no order matches both
        """
        order = self.session.query(Order).filter(Order.order_number == order_number).first()
        if order is None or not phone or normalize_phone(order.customer_phone)[-8:] != normalize_phone(phone)[-8:]:
            raise NotFoundError("Order not found")

        merchant = order.merchant
        return {
            'order_number': order.order_number,
            'status': order.status.value,
            'delivery_method': order.delivery_method.value,
            'payment_status': order.payment_status.value if order.payment_status else None,
            'total': float(order.total),
            'items': [
                {'product_name': i.product_name, 'variant_name': i.variant_name, 'quantity': i.quantity}
                for i in order.items
            ],
            'merchant': {'business_name': merchant.business_name, 'slug': merchant.slug, 'phone': merchant.phone},
            'timeline': {
                'created_at': order.created_at.isoformat(),
                'confirmed_at': order.confirmed_at.isoformat() if order.confirmed_at else None,
                'prepared_at': order.prepared_at.isoformat() if order.prepared_at else None,
                'ready_at': order.ready_at.isoformat() if order.ready_at else None,
                'delivered_at': order.delivered_at.isoformat() if order.delivered_at else None,
                'completed_at': order.completed_at.isoformat() if order.completed_at else None,
                'cancelled_at': order.cancelled_at.isoformat() if order.cancelled_at else None,
            },
        }

    def get_dashboard_summary(self, merchant_id: str, now: Optional[datetime] = None) -> Dict:
        """Headline numbers for the merchant dashboard."""
        merchant = self.session.get(Merchant, merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found")

        day = to_singapore(now or utcnow()).date()
        start, end = singapore_day_bounds(day)
        today = self.session.query(Order).filter(
            Order.merchant_id == merchant_id,
            Order.created_at >= start,
            Order.created_at < end,
        )

        revenue = today.filter(Order.status.notin_([OrderStatus.CANCELLED, OrderStatus.REFUNDED])) \
            .with_entities(func.coalesce(func.sum(Order.total), 0)).scalar()

        base = self.session.query(Order).filter(Order.merchant_id == merchant_id)
        recent = base.order_by(Order.created_at.desc()).limit(5).all()

        return {
            'merchant': {'id': merchant.id, 'business_name': merchant.business_name, 'slug': merchant.slug},
            'today_orders': today.count(),
            'today_revenue': float(money(revenue)),
            'pending_orders': base.filter(Order.status == OrderStatus.PENDING).count(),
            'active_orders': base.filter(Order.status.in_(ACTIVE_STATUSES)).count(),
            'low_stock_products': len(self.inventory.get_low_stock_products(merchant_id)),
            'unread_notifications': self.notifications.unread_count(merchant_id=merchant_id),
            'recent_orders': [order.to_summary_dict() for order in recent],
        }
