# homejiak/tests/base.py

"""
Shared fixtures: an in-memory SQLite database built from the ORM metadata
and small factories for the records most tests need.
"""

import unittest
from decimal import Decimal
from itertools import count

from homejiak.db import db
from homejiak.models import (
    Customer, DeliveryMethod, Merchant, MerchantStatus, Order, OrderItem, OrderStatus,
    Payment, PaymentMethod, PaymentStatus, Product, ProductStatus
)
from homejiak.utils.cache import cache

_sequence = count(1)


def open_all_week():
    days = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
    return {day: {'isOpen': True, 'slots': []} for day in days}


class DatabaseTestCase(unittest.TestCase):
    """Fresh schema per test."""

    def setUp(self):
        db.initialize('sqlite://')
        db.create_all_tables()
        self.session = db.session_factory()
        cache.clear()

    def tearDown(self):
        self.session.close()
        db.session.remove()
        db.drop_all_tables()

    def make_merchant(self, **fields):
        n = next(_sequence)
        values = {
            'user_id': f'user-{n}',
            'email': f'merchant{n}@example.com',
            'business_name': f'Kitchen {n}',
            'slug': f'kitchen-{n}',
            'status': MerchantStatus.ACTIVE,
            'paynow_number': '91234567',
            'delivery_enabled': True,
            'pickup_enabled': True,
            'delivery_fee': Decimal('5.00'),
            'minimum_order': Decimal('0'),
            'operating_hours': open_all_week(),
        }
        values.update(fields)
        merchant = Merchant(**values)
        self.session.add(merchant)
        self.session.commit()
        return merchant

    def make_product(self, merchant, **fields):
        values = {
            'merchant_id': merchant.id,
            'name': f'Dish {next(_sequence)}',
            'price': Decimal('10.00'),
            'status': ProductStatus.ACTIVE,
            'track_quantity': True,
            'quantity': 10,
            'low_stock_threshold': 2,
            'allow_backorder': False,
        }
        values.update(fields)
        product = Product(**values)
        self.session.add(product)
        self.session.commit()
        return product

    def make_customer(self, **fields):
        n = next(_sequence)
        values = {'name': f'Customer {n}', 'phone': '+6598765432', 'email': f'customer{n}@example.com'}
        values.update(fields)
        customer = Customer(**values)
        self.session.add(customer)
        self.session.commit()
        return customer

    def make_order(self, merchant, product=None, quantity=1, status=OrderStatus.PENDING,
                   delivery_method=DeliveryMethod.PICKUP, customer=None, **fields):
        """Order with one line item and a pending PayNow payment."""
        product = product or self.make_product(merchant, track_quantity=False)
        line_total = product.price * quantity
        values = {
            'order_number': f'ORD{next(_sequence):06d}',
            'merchant_id': merchant.id,
            'customer_id': customer.id if customer else None,
            'status': status,
            'delivery_method': delivery_method,
            'subtotal': line_total,
            'delivery_fee': Decimal('0'),
            'total': line_total,
            'payment_method': PaymentMethod.PAYNOW,
            'payment_status': PaymentStatus.PENDING,
            'customer_name': customer.name if customer else 'Walk In',
            'customer_phone': customer.phone if customer else '+6598765432',
        }
        values.update(fields)
        order = Order(**values)
        order.items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            quantity=quantity,
            price=product.price,
            total=line_total,
        ))
        order.payment = Payment(amount=line_total, method=PaymentMethod.PAYNOW, status=PaymentStatus.PENDING)
        self.session.add(order)
        self.session.commit()
        return order
