"""
Tests for merchant product management and the public catalog.
"""
import unittest
from decimal import Decimal

from homejiak.exceptions import NotFoundError, ValidationError
from homejiak.models import AnalyticsEvent, MerchantStatus, ProductStatus, ProductView
from homejiak.services.product_service import ProductService
from homejiak.tests.base import DatabaseTestCase


class TestProductService(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.merchant = self.make_merchant()
        self.service = ProductService(self.session)

    def test_create_defaults_to_draft(self):
        product = self.service.create_product(self.merchant.id, {'name': '  Kaya Toast ', 'price': '3.456'})
        self.assertEqual(product.name, 'Kaya Toast')
        self.assertEqual(product.price, Decimal('3.46'))
        self.assertEqual(product.status, ProductStatus.DRAFT)

    def test_create_validates_fields(self):
        with self.assertRaises(ValidationError):
            self.service.create_product(self.merchant.id, {'name': 'Otah'})
        with self.assertRaises(ValidationError) as ctx:
            self.service.create_product(self.merchant.id, {'name': 'Otah', 'price': -1, 'quantity': -2})
        self.assertIn('price', ctx.exception.details)
        self.assertIn('quantity', ctx.exception.details)

    def test_category_must_belong_to_merchant(self):
        foreign = self.service.create_category(self.make_merchant().id, 'Desserts')
        with self.assertRaises(ValidationError):
            self.service.create_product(self.merchant.id, {'name': 'Chendol', 'price': 3, 'category_id': foreign.id})

    def test_update_and_soft_delete(self):
        product = self.make_product(self.merchant)
        self.service.update_product(self.merchant.id, product.id, {'price': 12, 'status': 'draft'})
        self.assertEqual(product.price, Decimal('12.00'))
        self.assertEqual(product.status, ProductStatus.DRAFT)

        self.service.delete_product(self.merchant.id, product.id)
        self.assertEqual(product.status, ProductStatus.DISCONTINUED)
        self.assertIsNotNone(product.deleted_at)
        with self.assertRaises(NotFoundError):
            self.service.get_product(self.merchant.id, product.id)

    def test_other_merchant_cannot_edit(self):
        product = self.make_product(self.make_merchant())
        with self.assertRaises(NotFoundError):
            self.service.update_product(self.merchant.id, product.id, {'price': 1})

    def test_bulk_update(self):
        products = [self.make_product(self.merchant, status=ProductStatus.DRAFT) for _ in range(3)]
        changed = self.service.bulk_update(self.merchant.id, [p.id for p in products[:2]], 'activate')
        self.assertEqual(changed, 2)
        self.assertEqual([p.status for p in products], [ProductStatus.ACTIVE, ProductStatus.ACTIVE, ProductStatus.DRAFT])
        with self.assertRaises(ValidationError):
            self.service.bulk_update(self.merchant.id, [products[0].id], 'archive')

    def test_list_products(self):
        self.make_product(self.merchant, name='Curry Puff', description='Flaky pastry')
        self.make_product(self.merchant, name='Nasi Lemak', status=ProductStatus.DRAFT)
        result = self.service.list_products(self.merchant.id, search='pastry')
        self.assertEqual([p['name'] for p in result['items']], ['Curry Puff'])
        self.assertEqual(self.service.list_products(self.merchant.id, status='draft')['pagination']['total'], 1)

    def test_variants(self):
        product = self.make_product(self.merchant)
        small = self.service.add_variant(self.merchant.id, product.id, 'Small', price_adjustment='-1.00', quantity=3,
                                         is_default=True)
        large = self.service.add_variant(self.merchant.id, product.id, 'Large', price_adjustment=2, quantity=1)
        self.service.update_variant(self.merchant.id, large.id, is_default=True, quantity=4)

        self.assertFalse(small.is_default)
        self.assertTrue(large.is_default)
        self.assertEqual(large.quantity, 4)
        with self.assertRaises(ValidationError):
            self.service.add_variant(self.merchant.id, product.id, 'Bad', quantity=-1)
        with self.assertRaises(NotFoundError):
            self.service.update_variant(self.make_merchant().id, large.id, name='Huge')

    def test_categories_are_unique_by_slug(self):
        first = self.service.create_category(self.merchant.id, 'Rice Bowls', sort_order=2)
        again = self.service.create_category(self.merchant.id, 'rice bowls')
        self.service.create_category(self.merchant.id, 'Drinks', sort_order=1)
        self.assertEqual(first.id, again.id)
        self.assertEqual([c.name for c in self.service.list_categories(self.merchant.id)], ['Drinks', 'Rice Bowls'])


class TestPublicCatalog(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.merchant = self.make_merchant(slug='mei-kitchen')
        self.service = ProductService(self.session)
        self.cheap = self.make_product(self.merchant, name='Kueh Lapis', price=Decimal('3.00'))
        self.dear = self.make_product(self.merchant, name='Ayam Buah Keluak', price=Decimal('18.00'))
        self.make_product(self.merchant, name='Secret Menu', status=ProductStatus.DRAFT)

    def test_only_live_products_listed(self):
        result = self.service.list_public_products('mei-kitchen', sort='price_asc')
        self.assertEqual([p['name'] for p in result['items']], ['Kueh Lapis', 'Ayam Buah Keluak'])

    def test_price_and_search_filters(self):
        result = self.service.list_public_products('mei-kitchen', min_price=5)
        self.assertEqual([p['id'] for p in result['items']], [self.dear.id])
        result = self.service.list_public_products('mei-kitchen', search='kueh')
        self.assertEqual([p['id'] for p in result['items']], [self.cheap.id])
        with self.assertRaises(ValidationError):
            self.service.list_public_products('mei-kitchen', sort='random')

    def test_suspended_merchant_hidden(self):
        self.merchant.status = MerchantStatus.SUSPENDED
        self.session.commit()
        with self.assertRaises(NotFoundError):
            self.service.list_public_products('mei-kitchen')

    def test_product_view_recorded(self):
        data = self.service.get_public_product('mei-kitchen', self.cheap.id, session_id='s1')
        self.assertEqual(data['view_count'], 1)
        self.assertEqual(self.session.query(ProductView).count(), 1)
        self.assertEqual(self.session.query(AnalyticsEvent).filter(AnalyticsEvent.event == 'product_view').count(), 1)


if __name__ == '__main__':
    unittest.main()
