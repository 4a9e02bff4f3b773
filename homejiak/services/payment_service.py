# homejiak/services/payment_service.py
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from homejiak.models import (
    Merchant, Order, OrderEvent, OrderStatus, Payment, PaymentMethod, PaymentStatus,
    NotificationType
)
from homejiak.exceptions import NotFoundError, PaymentError, ValidationError
from homejiak.services.notification_service import NotificationService
from homejiak.services.order_service import OrderService, can_update_order_status
from homejiak.utils.date_utils import utcnow
from homejiak.utils.paynow import build_paynow_payload
from homejiak.utils.validation import money

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for the manual PayNow proof-of-payment flow."""

    def __init__(self, session: Session):
        """Initialize the payment service.

        Args:
            session: Database session
        """
        self.session = session
        self.orders = OrderService(session)
        self.notifications = NotificationService(session)

    def _order(self, order_id: str, merchant_id: Optional[str] = None, lock: bool = False) -> Order:
        query = self.session.query(Order).filter(Order.id == order_id)
        if merchant_id:
            query = query.filter(Order.merchant_id == merchant_id)
        if lock:
            query = query.with_for_update()
        order = query.first()
        if order is None:
            raise NotFoundError("Order not found")
        return order

    def _ensure_payment(self, order: Order) -> Payment:
        if order.payment is None:
            order.payment = Payment(
                order_id=order.id,
                amount=order.total,
                method=order.payment_method or PaymentMethod.PAYNOW,
                status=PaymentStatus.PENDING,
            )
            self.session.add(order.payment)
        return order.payment

    def upload_proof(self, order_id: str, proof_url: str, transaction_id: Optional[str] = None) -> Order:
        """Attach a payment screenshot to an order and mark its payment PROCESSING.

        Args:
            order_id: Order ID
            proof_url: Public URL of the uploaded proof
            transaction_id: Optional bank transaction reference

        Returns:
            Updated order
        """
        if not proof_url:
            raise ValidationError("Proof URL is required")

        try:
            order = self._order(order_id, lock=True)
            if order.status in (OrderStatus.CANCELLED, OrderStatus.REFUNDED):
                raise PaymentError("Order is no longer payable")
            if order.payment_status == PaymentStatus.COMPLETED:
                raise PaymentError("Payment already verified")

            payment = self._ensure_payment(order)
            payment.status = PaymentStatus.PROCESSING
            payment.proof_url = proof_url
            if transaction_id:
                payment.transaction_id = transaction_id

            order.payment_proof_url = proof_url
            order.payment_status = PaymentStatus.PROCESSING

            self.session.add(OrderEvent(
                order_id=order.id,
                event='payment_proof_uploaded',
                data={'proof_url': proof_url, 'transaction_id': transaction_id},
            ))
            self.notifications.create_notification(
                NotificationType.PAYMENT_RECEIVED,
                merchant_id=order.merchant_id,
                order_id=order.id,
                data={
                    'orderNumber': order.order_number,
                    'amount': f"{money(order.total):.2f}",
                    'paymentMethod': payment.method.value,
                },
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Payment proof uploaded for order {order.order_number}")
        return order

    def get_status(self, order_id: str) -> Dict:
        order = self._order(order_id)
        payment = order.payment
        return {
            'status': order.payment_status.value if order.payment_status else None,
            'method': (payment.method if payment else order.payment_method).value,
            'amount': float(payment.amount if payment else order.total),
            'paid_at': payment.verified_at.isoformat() if payment and payment.verified_at else None,
            'payment_id': payment.id if payment else None,
        }

    def get_merchant_methods(self, merchant_id: str) -> List[Dict]:
        """Payment methods a merchant accepts."""
        merchant = self.session.get(Merchant, merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found")

        methods = []
        if merchant.paynow_number or merchant.paynow_uen:
            methods.append({
                'method': PaymentMethod.PAYNOW.value,
                'enabled': True,
                'details': {'number': merchant.paynow_number, 'uen': merchant.paynow_uen},
            })
        return methods

    def verify_payment(self, merchant_id: str, order_id: str, amount=None,
                       transaction_id: Optional[str] = None, actor: Optional[str] = None) -> Order:
        """Confirm a payment by hand, which also confirms the order.

        Args:
            merchant_id: Merchant ID
            order_id: Order ID
            amount: Amount actually received; defaults to the order total
            transaction_id: Bank transaction reference
            actor: User verifying the payment

        Returns:
            Updated order
        """
        try:
            order = self._order(order_id, merchant_id, lock=True)
            if order.payment_status == PaymentStatus.COMPLETED:
                raise PaymentError("Payment already verified")
            if not can_update_order_status(order.status, OrderStatus.CONFIRMED, order.is_pickup):
                raise PaymentError(f"Cannot confirm an order that is {order.status.value}")

            received = money(order.total if amount is None else amount)
            if received != money(order.total):
                logger.warning(f"Order {order.order_number}: received ${received}, expected ${money(order.total)}")

            now = utcnow()
            payment = self._ensure_payment(order)
            payment.status = PaymentStatus.COMPLETED
            payment.amount = received
            payment.processed_at = now
            payment.verified_at = now
            payment.verified_by = actor
            if transaction_id:
                payment.transaction_id = transaction_id
            order.payment_status = PaymentStatus.COMPLETED

            self.orders.apply_status(order, OrderStatus.CONFIRMED, notes='Payment verified', actor=actor)
            self.session.add(OrderEvent(
                order_id=order.id,
                event='payment_verified',
                data={'amount': float(received), 'transaction_id': transaction_id},
                created_by=actor,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Payment verified for order {order.order_number}")
        return order

    def reject_payment(self, merchant_id: str, order_id: str, reason: str,
                       actor: Optional[str] = None) -> Order:
        """Reject a payment proof; the order is cancelled and its stock released.

        Args:
            merchant_id: Merchant ID
            order_id: Order ID
            reason: Why the payment was rejected
            actor: User rejecting the payment

        Returns:
            Updated order
        """
        if not reason or len(reason.strip()) < 2:
            raise ValidationError("A rejection reason is required")

        try:
            order = self._order(order_id, merchant_id, lock=True)
            if not can_update_order_status(order.status, OrderStatus.CANCELLED, order.is_pickup):
                raise PaymentError(f"Cannot reject payment for an order that is {order.status.value}")

            payment = self._ensure_payment(order)
            payment.status = PaymentStatus.FAILED
            payment.failure_reason = reason
            order.payment_status = PaymentStatus.FAILED
            order.notes = f"Payment rejected: {reason}"

            self.orders.apply_status(order, OrderStatus.CANCELLED, notes=order.notes,
                                     reason=f"Payment rejected: {reason}", actor=actor)
            self.session.add(OrderEvent(
                order_id=order.id,
                event='payment_rejected',
                data={'reason': reason, 'payment_id': payment.id},
                created_by=actor,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Payment rejected for order {order.order_number}: {reason}")
        return order

    def generate_qr(self, merchant_id: str, amount=0, reference: Optional[str] = None) -> Dict:
        """PayNow payload for the merchant's own number or UEN.

        Returns:
            Dictionary with the ``payload`` string to render as a QR code
        """
        merchant = self.session.get(Merchant, merchant_id)
        if merchant is None:
            raise NotFoundError("Merchant not found")
        proxy = merchant.paynow_number or merchant.paynow_uen
        if not proxy:
            raise PaymentError("PayNow number not configured")
        return {
            'payload': build_paynow_payload(proxy, amount or 0, reference, merchant.business_name),
            'amount': float(money(amount or 0)),
            'reference': reference,
        }

    def get_pending_payments(self, merchant_id: str) -> List[Order]:
        """Orders with an uploaded proof awaiting verification, newest first."""
        return self.session.query(Order) \
            .filter(Order.merchant_id == merchant_id,
                    Order.payment_status == PaymentStatus.PROCESSING,
                    Order.payment_proof_url.isnot(None)) \
            .options(selectinload(Order.items), selectinload(Order.payment)) \
            .order_by(Order.created_at.desc()) \
            .all()
