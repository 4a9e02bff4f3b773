"""
Tests for merchant registration, storefront lookup, settings and administration.
"""
import unittest
from decimal import Decimal

from homejiak.exceptions import ConflictError, NotFoundError, ValidationError
from homejiak.models import AnalyticsEvent, MerchantStatus
from homejiak.services.merchant_service import NOT_FOUND, MerchantService
from homejiak.tests.base import DatabaseTestCase
from homejiak.utils.cache import CacheKeys, cache


class TestRegistration(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.service = MerchantService(self.session)

    def test_register_creates_active_merchant(self):
        merchant = self.service.register_merchant('u-1', ' Mei@Example.com ', "Auntie Mei's Kitchen", '9123 4567')
        self.assertEqual(merchant.status, MerchantStatus.ACTIVE)
        self.assertEqual(merchant.slug, 'auntie-mei-s-kitchen')
        self.assertEqual(merchant.email, 'mei@example.com')
        self.assertEqual(self.service.get_merchant_for_user('u-1').id, merchant.id)

    def test_slug_gets_numbered_suffix(self):
        self.service.register_merchant('u-1', 'a@example.com', 'Nasi Lemak House')
        second = self.service.register_merchant('u-2', 'b@example.com', 'Nasi Lemak House')
        self.assertEqual(second.slug, 'nasi-lemak-house-2')

    def test_duplicate_user_or_email(self):
        self.service.register_merchant('u-1', 'a@example.com', 'Kopi Corner')
        with self.assertRaises(ConflictError):
            self.service.register_merchant('u-1', 'other@example.com', 'Another')
        with self.assertRaises(ConflictError):
            self.service.register_merchant('u-9', 'A@example.com', 'Another')

    def test_invalid_registration(self):
        with self.assertRaises(ValidationError) as ctx:
            self.service.register_merchant('u-1', 'not-an-email', 'X', phone='1234')
        self.assertEqual(set(ctx.exception.details), {'business_name', 'email', 'phone'})


class TestStorefrontLookup(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.service = MerchantService(self.session)
        self.merchant = self.make_merchant(slug='mei-kitchen', business_name='Mei Kitchen')

    def test_miss_then_hit(self):
        data, cached = self.service.lookup_public_merchant('mei-kitchen', referrer='https://ig.me')
        self.assertFalse(cached)
        self.assertEqual(data['business_name'], 'Mei Kitchen')
        self.assertTrue(data['is_open'])
        self.assertNotIn('email', data)

        data, cached = self.service.lookup_public_merchant('mei-kitchen')
        self.assertTrue(cached)
        self.assertEqual(data['id'], self.merchant.id)

        views = self.session.query(AnalyticsEvent).filter(AnalyticsEvent.event == 'storefront_view').all()
        self.assertEqual(len(views), 2)

    def test_unknown_slug_cached_as_not_found(self):
        self.assertEqual(self.service.lookup_public_merchant('nobody'), (None, False))
        self.assertIs(cache.get(CacheKeys.merchant('nobody')), NOT_FOUND)
        self.assertEqual(self.service.lookup_public_merchant('nobody'), (None, True))
        with self.assertRaises(NotFoundError):
            self.service.get_public_merchant('nobody')

    def test_settings_update_invalidates_cache(self):
        self.service.lookup_public_merchant('mei-kitchen')
        self.service.update_settings(self.merchant.id, description='Peranakan home cooking')
        data, cached = self.service.lookup_public_merchant('mei-kitchen')
        self.assertFalse(cached)
        self.assertEqual(data['description'], 'Peranakan home cooking')

    def test_suspended_merchant_hidden(self):
        self.service.lookup_public_merchant('mei-kitchen')
        self.service.suspend_merchant(self.merchant.id, 'Complaints')
        self.assertEqual(self.service.lookup_public_merchant('mei-kitchen'), (None, False))

    def test_search_lists_open_merchants_first(self):
        closed = {day: {'isOpen': False, 'slots': []} for day in
                  ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')}
        self.make_merchant(business_name='Aaa Closed Cafe', operating_hours=closed, cuisine_types=['Cafe'])
        self.make_merchant(business_name='Zzz Pickup Only', delivery_enabled=False, cuisine_types=['Malay'])

        result = self.service.search_merchants()
        names = [m['business_name'] for m in result['items']]
        self.assertEqual(names[-1], 'Aaa Closed Cafe')

        delivery = self.service.search_merchants(delivery_only=True)
        self.assertNotIn('Zzz Pickup Only', [m['business_name'] for m in delivery['items']])
        malay = self.service.search_merchants(cuisine='malay')
        self.assertEqual([m['business_name'] for m in malay['items']], ['Zzz Pickup Only'])


class TestSettings(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.service = MerchantService(self.session)
        self.merchant = self.make_merchant()

    def test_valid_update(self):
        merchant = self.service.update_settings(
            self.merchant.id, delivery_fee='3.5', minimum_order=20, preparation_time=45,
            paynow_number='+65 8123 4567', paynow_uen='201912345k')
        self.assertEqual(merchant.delivery_fee, Decimal('3.50'))
        self.assertEqual(merchant.paynow_number, '81234567')
        self.assertEqual(merchant.paynow_uen, '201912345K')

    def test_limits(self):
        cases = {
            'delivery_fee': 50.01,
            'minimum_order': 1001,
            'preparation_time': 4,
            'paynow_number': '61234567',
            'postal_code': '12345',
            'business_name': 'A',
        }
        for field, value in cases.items():
            with self.subTest(field=field):
                with self.assertRaises(ValidationError) as ctx:
                    self.service.update_settings(self.merchant.id, **{field: value})
                self.assertIn(field, ctx.exception.details)

    def test_unknown_setting(self):
        with self.assertRaises(ValidationError):
            self.service.update_settings(self.merchant.id, status='ACTIVE')

    def test_one_fulfilment_method_required(self):
        self.service.update_settings(self.merchant.id, delivery_enabled=False)
        with self.assertRaises(ValidationError):
            self.service.update_settings(self.merchant.id, pickup_enabled=False)
        self.assertTrue(self.merchant.pickup_enabled)


class TestAdministration(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.service = MerchantService(self.session)

    def test_approve_pending(self):
        pending = self.make_merchant(status=MerchantStatus.PENDING)
        self.make_merchant()
        self.assertEqual([m.id for m in self.service.list_pending_merchants()], [pending.id])

        self.service.approve_merchant(pending.id)
        self.assertEqual(pending.status, MerchantStatus.ACTIVE)
        with self.assertRaises(ValidationError):
            self.service.approve_merchant(pending.id)

    def test_approved_merchant_visible_at_once(self):
        pending = self.make_merchant(status=MerchantStatus.PENDING, slug='new-kitchen')
        with self.assertRaises(NotFoundError):
            self.service.get_public_merchant('new-kitchen')
        self.assertIs(cache.get(CacheKeys.merchant('new-kitchen')), NOT_FOUND)

        self.service.approve_merchant(pending.id)
        data, cached = self.service.lookup_public_merchant('new-kitchen')
        self.assertFalse(cached)
        self.assertEqual(data['id'], pending.id)

    def test_suspend(self):
        merchant = self.make_merchant()
        self.service.suspend_merchant(merchant.id)
        self.assertEqual(merchant.status, MerchantStatus.SUSPENDED)
        with self.assertRaises(ValidationError):
            self.service.suspend_merchant(merchant.id)

    def test_list_all_merchants(self):
        self.make_merchant(business_name='Kopi Corner')
        self.make_merchant(status=MerchantStatus.SUSPENDED)
        self.assertEqual(self.service.list_all_merchants()['pagination']['total'], 2)
        self.assertEqual(self.service.list_all_merchants(status='suspended')['pagination']['total'], 1)
        found = self.service.list_all_merchants(search='kopi')
        self.assertEqual([m['business_name'] for m in found['items']], ['Kopi Corner'])
        with self.assertRaises(NotFoundError):
            self.service.approve_merchant('missing')


if __name__ == '__main__':
    unittest.main()
