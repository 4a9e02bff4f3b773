# homejiak/services/checkout_service.py
import logging
import time
import uuid
from datetime import timedelta
from typing import Dict, List, Optional

import numpy as np
from sqlalchemy.orm import Session

from homejiak.config import config
from homejiak.models import (
    Merchant, MerchantStatus, Product, ProductVariant, ProductStatus, Customer, Address,
    Order, OrderItem, OrderEvent, OrderStatus, Payment, PaymentMethod, PaymentStatus,
    DeliveryMethod, CheckoutSession, CheckoutStatus, NotificationType, NotificationPriority
)
from homejiak.exceptions import CheckoutError, NotFoundError, ValidationError
from homejiak.services.inventory_service import InventoryService
from homejiak.services.modifier_service import ModifierService
from homejiak.services.notification_service import NotificationService
from homejiak.utils.date_utils import utcnow
from homejiak.utils.paynow import build_paynow_payload
from homejiak.utils.validation import is_valid_phone, is_valid_postal_code, money, normalize_phone

logger = logging.getLogger(__name__)


def generate_order_number(timestamp_ms: Optional[int] = None) -> str:
    """Order number ``ORD`` followed by the millisecond clock in base 36."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"ORD{np.base_repr(timestamp_ms, 36)}"


def payment_reference_for(session_id: str) -> str:
    return f"PAY-{session_id[:8].upper()}"


class CheckoutService:
    """Service for the two-step checkout: price-locked session, then order."""

    def __init__(self, session: Session):
        """Initialize the checkout service.

        Args:
            session: Database session
        """
        self.session = session
        self.inventory = InventoryService(session)
        self.modifiers = ModifierService(session)
        self.notifications = NotificationService(session)
        self._settings = config.checkout_config

    def _active_merchant(self, merchant_id: str) -> Merchant:
        merchant = self.session.query(Merchant).filter(
            Merchant.id == merchant_id,
            Merchant.status == MerchantStatus.ACTIVE,
            Merchant.deleted_at.is_(None),
        ).first()
        if merchant is None:
            raise NotFoundError("Merchant not found or inactive")
        return merchant

    def _paynow_payload(self, merchant: Merchant, amount, reference: str) -> Optional[str]:
        proxy = merchant.paynow_number or merchant.paynow_uen
        if not proxy:
            return None
        return build_paynow_payload(proxy, amount, reference, merchant.business_name)

    def create_session(self, merchant_id: str, items: List[Dict]) -> Dict:
        """Validate a cart and lock its prices for 30 minutes.

        Args:
            merchant_id: Merchant being ordered from
            items: Line items ``{"product_id", "quantity", "variant_id"?, "modifiers"?, "notes"?}``;
                ``modifiers`` is ``[{"modifier_id", "quantity"?}]``

        Returns:
            Session summary with session_id, subtotal, payment_reference,
            merchant, items, expires_at and paynow_payload

        Raises:
            NotFoundError if the merchant is not active
            CheckoutError if products are unavailable or the minimum order is not met
        """
        if not items:
            raise ValidationError("Cart is empty")

        merchant = self._active_merchant(merchant_id)

        product_ids = {item['product_id'] for item in items}
        products = {
            p.id: p for p in self.session.query(Product).filter(
                Product.id.in_(product_ids),
                Product.merchant_id == merchant_id,
                Product.status == ProductStatus.ACTIVE,
                Product.deleted_at.is_(None),
            ).all()
        }
        if len(products) != len(product_ids):
            missing = sorted(product_ids - set(products))
            raise CheckoutError("Some products are not available", details={'product_ids': missing})

        session_items = []
        subtotal = money(0)
        for item in items:
            quantity = item.get('quantity')
            if not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError("Quantity must be a positive integer")

            product = products[item['product_id']]
            unit_price = money(product.price)
            variant_name = None
            variant_id = item.get('variant_id')
            if variant_id:
                variant = self.session.get(ProductVariant, variant_id)
                if variant is None or variant.product_id != product.id:
                    raise CheckoutError(f"Variant not available for {product.name}")
                unit_price = money(unit_price + money(variant.price_adjustment))
                variant_name = variant.name

            adjustment, modifiers = self.modifiers.resolve_selections(product, item.get('modifiers'), unit_price)
            unit_price = money(unit_price + adjustment)

            line_total = money(unit_price * quantity)
            subtotal = money(subtotal + line_total)
            session_items.append({
                'product_id': product.id,
                'variant_id': variant_id,
                'variant_name': variant_name,
                'modifiers': modifiers,
                'quantity': quantity,
                'notes': item.get('notes'),
                'product_name': product.name,
                'product_price': float(unit_price),
                'total': float(line_total),
            })

        minimum = money(merchant.minimum_order)
        if subtotal < minimum:
            raise CheckoutError(f"Minimum order amount is ${minimum:.2f}. Current total: ${subtotal:.2f}")

        availability = self.inventory.check_bulk_availability(session_items)
        unavailable = [products[pid].name for pid, ok in availability.items() if not ok]
        if unavailable:
            raise CheckoutError("Some products are out of stock", details={'products': unavailable})

        session_id = uuid.uuid4().hex
        reference = payment_reference_for(session_id)
        checkout = CheckoutSession(
            id=session_id,
            merchant_id=merchant.id,
            items=session_items,
            subtotal=subtotal,
            payment_reference=reference,
            status=CheckoutStatus.PENDING,
            expires_at=utcnow() + timedelta(minutes=self._settings['session_ttl_minutes']),
        )
        self.session.add(checkout)
        self.session.commit()

        logger.info(f"Checkout session {session_id} created for merchant {merchant.id}: ${subtotal}")
        return self._summary(checkout, merchant)

    def _summary(self, checkout: CheckoutSession, merchant: Merchant) -> Dict:
        return {
            'session_id': checkout.id,
            'subtotal': float(checkout.subtotal),
            'payment_reference': checkout.payment_reference,
            'status': checkout.status.value,
            'merchant': merchant.to_public_dict(),
            'items': checkout.items,
            'expires_at': checkout.expires_at.isoformat(),
            'paynow_payload': self._paynow_payload(merchant, checkout.subtotal, checkout.payment_reference),
        }

    def _load_session(self, session_id: str, lock: bool = False) -> CheckoutSession:
        query = self.session.query(CheckoutSession).filter(CheckoutSession.id == session_id)
        if lock:
            query = query.with_for_update()
        checkout = query.first()
        if checkout is None or checkout.status == CheckoutStatus.EXPIRED:
            raise NotFoundError("Session not found or expired")

        if checkout.status == CheckoutStatus.PENDING and checkout.is_expired():
            checkout.status = CheckoutStatus.EXPIRED
            self.session.commit()
            raise NotFoundError("Session expired")
        return checkout

    def get_session(self, session_id: str) -> Dict:
        checkout = self._load_session(session_id)
        return self._summary(checkout, checkout.merchant)

    def _upsert_customer(self, contact: Dict) -> Customer:
        email = (contact.get('email') or '').strip().lower() or None
        phone = normalize_phone(contact.get('phone'))

        query = self.session.query(Customer)
        customer = None
        if email:
            customer = query.filter(Customer.email == email).first()
        if customer is None and phone:
            customer = query.filter(Customer.phone == phone).first()

        if customer is None:
            customer = Customer(email=email, phone=phone, name=contact['name'].strip())
            self.session.add(customer)
            self.session.flush()
        return customer

    def _new_order_number(self) -> str:
        timestamp = int(time.time() * 1000)
        number = generate_order_number(timestamp)
        while self.session.query(Order.id).filter(Order.order_number == number).first() is not None:
            timestamp += 1
            number = generate_order_number(timestamp)
        return number

    def complete(self, session_id: str, contact: Dict, delivery_method=DeliveryMethod.PICKUP,
                 delivery_address: Optional[Dict] = None, delivery_notes: Optional[str] = None,
                 payment_proof_url: Optional[str] = None) -> Dict:
        """Turn a checkout session into a PENDING order.

        Stock is reserved in the same transaction as the order insert, so a
        failed reservation leaves no order behind.

        Args:
            session_id: Checkout session ID
            contact: ``{"name", "email", "phone"}``
            delivery_method: DELIVERY or PICKUP
            delivery_address: ``{"line1", "line2"?, "unit_number"?, "postal_code"}`` for delivery
            delivery_notes: Notes for the merchant
            payment_proof_url: Uploaded PayNow screenshot

        Returns:
            Dictionary with order_id, order_number, total, payment_reference and paynow_payload
        """
        if not isinstance(delivery_method, DeliveryMethod):
            delivery_method = DeliveryMethod(str(delivery_method).upper())

        name = (contact.get('name') or '').strip()
        if len(name) < 2:
            raise ValidationError("Name must be at least 2 characters")
        if not is_valid_phone(contact.get('phone')):
            raise ValidationError("Invalid Singapore phone number")

        try:
            checkout = self._load_session(session_id, lock=True)
            if checkout.status == CheckoutStatus.COMPLETED:
                raise CheckoutError("Session already completed")

            merchant = self._active_merchant(checkout.merchant_id)
            if delivery_method == DeliveryMethod.DELIVERY and not merchant.delivery_enabled:
                raise CheckoutError("Delivery not available")
            if delivery_method == DeliveryMethod.PICKUP and not merchant.pickup_enabled:
                raise CheckoutError("Pickup not available")

            delivery_fee = money(merchant.delivery_fee) if delivery_method == DeliveryMethod.DELIVERY else money(0)
            subtotal = money(checkout.subtotal)
            total = money(subtotal + delivery_fee)

            customer = self._upsert_customer(contact)

            address = None
            if delivery_method == DeliveryMethod.DELIVERY:
                if not delivery_address or not delivery_address.get('line1'):
                    raise ValidationError("Delivery address is required")
                if not is_valid_postal_code(delivery_address.get('postal_code')):
                    raise ValidationError("Invalid postal code")
                address = Address(
                    customer_id=customer.id,
                    label='Delivery Address',
                    line1=delivery_address['line1'],
                    line2=delivery_address.get('line2'),
                    unit_number=delivery_address.get('unit_number'),
                    postal_code=delivery_address['postal_code'],
                )
                self.session.add(address)
                self.session.flush()

            order = Order(
                order_number=self._new_order_number(),
                merchant_id=merchant.id,
                customer_id=customer.id,
                status=OrderStatus.PENDING,
                delivery_method=delivery_method,
                delivery_address_id=address.id if address else None,
                delivery_address=address.format() if address else None,
                delivery_notes=delivery_notes,
                subtotal=subtotal,
                delivery_fee=delivery_fee,
                discount=money(0),
                total=total,
                payment_method=PaymentMethod.PAYNOW,
                payment_status=PaymentStatus.PENDING,
                payment_reference=checkout.payment_reference,
                payment_proof_url=payment_proof_url,
                customer_name=name,
                customer_email=customer.email,
                customer_phone=normalize_phone(contact['phone']),
            )
            for line in checkout.items:
                order.items.append(OrderItem(
                    product_id=line['product_id'],
                    variant_id=line.get('variant_id'),
                    product_name=line['product_name'],
                    variant_name=line.get('variant_name'),
                    quantity=line['quantity'],
                    price=money(line['product_price']),
                    total=money(line['total']),
                    notes=line.get('notes'),
                    modifiers=line.get('modifiers') or None,
                ))
            self.session.add(order)
            self.session.flush()

            self.inventory.reserve_stock(checkout.items, order_id=order.id, commit=False)

            self.session.add(Payment(
                order_id=order.id,
                amount=total,
                currency=self._settings['currency'],
                method=PaymentMethod.PAYNOW,
                status=PaymentStatus.PENDING,
                proof_url=payment_proof_url,
            ))
            self.session.add(OrderEvent(
                order_id=order.id,
                event='order_placed',
                data={'session_id': checkout.id, 'total': float(total)},
            ))
            self.notifications.create_notification(
                NotificationType.ORDER_PLACED,
                merchant_id=merchant.id,
                order_id=order.id,
                data={
                    'orderNumber': order.order_number,
                    'customerName': name,
                    'amount': f"{total:.2f}",
                },
                priority=NotificationPriority.HIGH,
            )

            checkout.status = CheckoutStatus.COMPLETED
            checkout.completed_at = utcnow()
            checkout.order_id = order.id
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(f"Order {order.order_number} placed with merchant {merchant.id}: ${total}")
        return {
            'order_id': order.id,
            'order_number': order.order_number,
            'total': float(total),
            'payment_reference': order.payment_reference,
            'paynow_payload': self._paynow_payload(merchant, total, order.payment_reference),
        }

    def expire_sessions(self) -> int:
        """Mark pending sessions past their expiry as EXPIRED.

        Returns:
            Number of sessions expired
        """
        now = utcnow()
        stale = self.session.query(CheckoutSession).filter(
            CheckoutSession.status == CheckoutStatus.PENDING,
            CheckoutSession.expires_at <= now,
        ).all()
        for checkout in stale:
            checkout.status = CheckoutStatus.EXPIRED
        self.session.commit()

        if stale:
            logger.info(f"Expired {len(stale)} checkout session(s)")
        return len(stale)
