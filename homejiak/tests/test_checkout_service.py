"""
Tests for checkout sessions and order placement.
"""
import unittest
from datetime import timedelta
from decimal import Decimal

from homejiak.exceptions import CheckoutError, InventoryError, NotFoundError, ValidationError
from homejiak.models import (
    CheckoutSession, CheckoutStatus, Customer, MerchantStatus, ModifierGroupType, ModifierPriceType,
    Notification, NotificationType, Order, OrderStatus, Payment, PaymentStatus, ProductModifier,
    ProductModifierGroup, ProductStatus, ProductVariant
)
from homejiak.services.checkout_service import CheckoutService, generate_order_number
from homejiak.services.order_service import OrderService
from homejiak.tests.base import DatabaseTestCase

CONTACT = {'name': 'Tan Ah Kow', 'email': 'ahkow@example.com', 'phone': '9876 5432'}
ADDRESS = {'line1': 'Blk 123 Tampines St 11', 'unit_number': '05-67', 'postal_code': '521123'}


class TestOrderNumber(unittest.TestCase):
    def test_base36_millisecond_clock(self):
        self.assertEqual(generate_order_number(0), 'ORD0')
        self.assertEqual(generate_order_number(35), 'ORDZ')
        self.assertEqual(generate_order_number(36), 'ORD10')
        self.assertEqual(generate_order_number(1700000000000), 'ORDLOYW3V28')


class TestCheckoutService(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.merchant = self.make_merchant(delivery_fee=Decimal('4.50'))
        self.product = self.make_product(self.merchant, price=Decimal('6.50'), quantity=5)
        self.service = CheckoutService(self.session)

    def create(self, quantity=2, **extra):
        return self.service.create_session(self.merchant.id, [dict(product_id=self.product.id, quantity=quantity, **extra)])

    def test_create_session_locks_prices(self):
        summary = self.create()

        self.assertEqual(summary['subtotal'], 13.0)
        self.assertEqual(summary['status'], 'PENDING')
        self.assertTrue(summary['payment_reference'].startswith('PAY-'))
        self.assertEqual(len(summary['payment_reference']), 12)
        self.assertEqual(summary['items'][0]['product_price'], 6.5)
        self.assertIn('5405' + '13.00', summary['paynow_payload'])

        checkout = self.session.get(CheckoutSession, summary['session_id'])
        delta = checkout.expires_at - checkout.created_at
        self.assertTrue(timedelta(minutes=29) < delta <= timedelta(minutes=30))

        # Later price changes do not affect the session
        self.product.price = Decimal('99.00')
        self.session.commit()
        self.assertEqual(self.service.get_session(summary['session_id'])['subtotal'], 13.0)

    def test_variant_price_adjustment(self):
        variant = ProductVariant(product_id=self.product.id, name='Large', price_adjustment=Decimal('1.25'), quantity=5)
        self.session.add(variant)
        self.session.commit()
        summary = self.create(quantity=1, variant_id=variant.id)
        self.assertEqual(summary['subtotal'], 7.75)
        self.assertEqual(summary['items'][0]['variant_name'], 'Large')

    def test_rejects_unavailable_products(self):
        foreign = self.make_product(self.make_merchant())
        draft = self.make_product(self.merchant, status=ProductStatus.DRAFT)
        for product in (foreign, draft):
            with self.assertRaises(CheckoutError):
                self.service.create_session(self.merchant.id, [{'product_id': product.id, 'quantity': 1}])

        with self.assertRaises(CheckoutError):
            self.create(quantity=6)
        with self.assertRaises(ValidationError):
            self.service.create_session(self.merchant.id, [])

    def test_minimum_order(self):
        self.merchant.minimum_order = Decimal('20.00')
        self.session.commit()
        with self.assertRaises(CheckoutError) as ctx:
            self.create()
        self.assertIn('$20.00', ctx.exception.message)

    def test_inactive_merchant(self):
        self.merchant.status = MerchantStatus.SUSPENDED
        self.session.commit()
        with self.assertRaises(NotFoundError):
            self.create()

    def test_expired_session(self):
        summary = self.create()
        checkout = self.session.get(CheckoutSession, summary['session_id'])
        checkout.expires_at = checkout.created_at - timedelta(seconds=1)
        self.session.commit()

        with self.assertRaises(NotFoundError):
            self.service.get_session(summary['session_id'])
        self.assertEqual(checkout.status, CheckoutStatus.EXPIRED)
        with self.assertRaises(NotFoundError):
            self.service.complete(summary['session_id'], CONTACT)

    def test_expire_sessions(self):
        summary = self.create()
        self.create()
        checkout = self.session.get(CheckoutSession, summary['session_id'])
        checkout.expires_at = checkout.created_at - timedelta(minutes=1)
        self.session.commit()
        self.assertEqual(self.service.expire_sessions(), 1)

    def test_complete_pickup(self):
        summary = self.create()
        result = self.service.complete(summary['session_id'], CONTACT, 'pickup', delivery_notes='Ring bell')

        order = self.session.get(Order, result['order_id'])
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.total, Decimal('13.00'))
        self.assertEqual(order.delivery_fee, Decimal('0.00'))
        self.assertEqual(order.customer_phone, '98765432')
        self.assertTrue(order.order_number.startswith('ORD'))
        self.assertEqual(result['payment_reference'], summary['payment_reference'])

        payment = self.session.query(Payment).filter(Payment.order_id == order.id).one()
        self.assertEqual(payment.status, PaymentStatus.PENDING)
        self.assertEqual(payment.amount, Decimal('13.00'))

        self.session.refresh(self.product)
        self.assertEqual(self.product.quantity, 3)

        alert = self.session.query(Notification).filter(Notification.type == NotificationType.ORDER_PLACED).one()
        self.assertEqual(alert.merchant_id, self.merchant.id)
        self.assertIn('Tan Ah Kow', alert.message)

        checkout = self.session.get(CheckoutSession, summary['session_id'])
        self.assertEqual(checkout.status, CheckoutStatus.COMPLETED)
        self.assertEqual(checkout.order_id, order.id)

        with self.assertRaises(CheckoutError):
            self.service.complete(summary['session_id'], CONTACT)

    def test_complete_delivery_adds_fee_and_address(self):
        summary = self.create()
        result = self.service.complete(summary['session_id'], CONTACT, 'DELIVERY', delivery_address=ADDRESS)

        self.assertEqual(result['total'], 17.5)
        order = self.session.get(Order, result['order_id'])
        self.assertEqual(order.delivery_fee, Decimal('4.50'))
        self.assertIsNotNone(order.delivery_address_id)
        self.assertIn('521123', order.delivery_address)

    def test_delivery_requires_valid_address(self):
        summary = self.create()
        with self.assertRaises(ValidationError):
            self.service.complete(summary['session_id'], CONTACT, 'DELIVERY')
        with self.assertRaises(ValidationError):
            self.service.complete(summary['session_id'], CONTACT, 'DELIVERY',
                                  delivery_address=dict(ADDRESS, postal_code='1234'))
        self.assertEqual(self.session.query(Order).count(), 0)

    def test_disabled_delivery_method(self):
        self.merchant.delivery_enabled = False
        self.session.commit()
        summary = self.create()
        with self.assertRaises(CheckoutError):
            self.service.complete(summary['session_id'], CONTACT, 'DELIVERY', delivery_address=ADDRESS)

    def test_customer_reused_by_email(self):
        for _ in range(2):
            summary = self.create(quantity=1)
            self.service.complete(summary['session_id'], CONTACT)
        self.assertEqual(self.session.query(Customer).count(), 1)
        self.assertEqual(self.session.query(Order).count(), 2)

    def test_stock_race_leaves_no_order(self):
        summary = self.create(quantity=5)
        self.product.quantity = 4
        self.session.commit()

        with self.assertRaises(InventoryError):
            self.service.complete(summary['session_id'], CONTACT)
        self.assertEqual(self.session.query(Order).count(), 0)
        self.session.refresh(self.product)
        self.assertEqual(self.product.quantity, 4)
        checkout = self.session.get(CheckoutSession, summary['session_id'])
        self.assertEqual(checkout.status, CheckoutStatus.PENDING)

    def test_stock_checked_per_variant(self):
        large = ProductVariant(product_id=self.product.id, name='Large', quantity=0)
        small = ProductVariant(product_id=self.product.id, name='Small', quantity=10)
        self.session.add_all([large, small])
        self.session.commit()

        with self.assertRaises(CheckoutError):
            self.service.create_session(self.merchant.id, [
                {'product_id': self.product.id, 'quantity': 1, 'variant_id': large.id},
                {'product_id': self.product.id, 'quantity': 1, 'variant_id': small.id},
            ])
        self.assertEqual(self.session.query(CheckoutSession).count(), 0)

    def test_stock_summed_across_lines(self):
        self.product.quantity = 3
        self.session.commit()

        with self.assertRaises(CheckoutError):
            self.service.create_session(self.merchant.id, [
                {'product_id': self.product.id, 'quantity': 2},
                {'product_id': self.product.id, 'quantity': 2, 'notes': 'less spicy'},
            ])
        summary = self.service.create_session(self.merchant.id, [
            {'product_id': self.product.id, 'quantity': 2},
            {'product_id': self.product.id, 'quantity': 1},
        ])
        self.assertEqual(summary['subtotal'], 19.5)

    def add_modifiers(self):
        group = ProductModifierGroup(merchant_id=self.merchant.id, name='Add-ons',
                                     type=ModifierGroupType.MULTI_SELECT)
        egg = ProductModifier(name='Fried egg', price_adjustment=Decimal('1.00'),
                              track_inventory=True, inventory=3)
        upsize = ProductModifier(name='Upsize', price_adjustment=Decimal('20'),
                                 price_type=ModifierPriceType.PERCENTAGE)
        group.modifiers.extend([egg, upsize])
        self.product.modifier_groups.append(group)
        self.session.commit()
        return egg, upsize

    def test_modifier_prices_locked_into_line(self):
        egg, upsize = self.add_modifiers()
        summary = self.create(quantity=2, modifiers=[{'modifier_id': egg.id, 'quantity': 1},
                                                     {'modifier_id': upsize.id}])

        # 6.50 + 1.00 egg + 20% of 6.50
        line = summary['items'][0]
        self.assertEqual(line['product_price'], 8.8)
        self.assertEqual(summary['subtotal'], 17.6)
        self.assertEqual([m['name'] for m in line['modifiers']], ['Fried egg', 'Upsize'])
        self.assertEqual(line['modifiers'][1]['price_adjustment'], 1.3)

        egg.price_adjustment = Decimal('5.00')
        self.session.commit()
        self.assertEqual(self.service.get_session(summary['session_id'])['subtotal'], 17.6)

    def test_modifier_stock(self):
        egg, _ = self.add_modifiers()
        with self.assertRaises(CheckoutError):
            self.create(quantity=2, modifiers=[{'modifier_id': egg.id, 'quantity': 2}])

        summary = self.create(quantity=3, modifiers=[{'modifier_id': egg.id}])
        result = self.service.complete(summary['session_id'], CONTACT)
        self.session.refresh(egg)
        self.assertEqual(egg.inventory, 0)

        order = self.session.get(Order, result['order_id'])
        self.assertEqual(order.items[0].modifiers[0]['modifier_id'], egg.id)
        OrderService(self.session).update_status(self.merchant.id, order.id, 'CANCELLED', reason='Sold out')
        self.session.refresh(egg)
        self.assertEqual(egg.inventory, 3)

    def test_contact_validation(self):
        summary = self.create()
        with self.assertRaises(ValidationError):
            self.service.complete(summary['session_id'], dict(CONTACT, phone='12345678'))
        with self.assertRaises(ValidationError):
            self.service.complete(summary['session_id'], dict(CONTACT, name='A'))


if __name__ == '__main__':
    unittest.main()
