"""
Tests for the Flask app: RPC dispatch, REST endpoints, the order stream and
the merchant page gate.
"""
import io
import json
import unittest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from homejiak.api import create_app
from homejiak.models import MerchantStatus, Order, OrderStatus, PaymentStatus, ProductStatus
from homejiak.services.auth_service import AuthUser
from homejiak.tests.base import DatabaseTestCase
from homejiak.utils.rate_limit import RateLimiter

MERCHANT_TOKEN = 'merchant-token'
CUSTOMER_TOKEN = 'customer-token'
ADMIN_TOKEN = 'admin-token'


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


class ApiTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()
        self.users = {
            MERCHANT_TOKEN: AuthUser('merchant-user', 'mei@example.com', {'userType': 'merchant'}),
            CUSTOMER_TOKEN: AuthUser('customer-user', 'ahkow@example.com', {'userType': 'customer'}),
            ADMIN_TOKEN: AuthUser('admin-user', 'ops@example.com', {'userType': 'admin'}),
        }
        self.auth = MagicMock()
        self.auth.get_user.side_effect = lambda token: self.users.get(token)
        self.storage = MagicMock()
        self.app = create_app({
            'TESTING': True,
            'AUTH_SERVICE': self.auth,
            'STORAGE_SERVICE': self.storage,
            'STREAM_MAX_POLLS': 0,
            'RATE_LIMITERS': {'public': RateLimiter(60, 1000), 'checkout': RateLimiter(60, 1000)},
        })
        self.client = self.app.test_client()
        self.merchant = self.make_merchant(user_id='merchant-user', slug='mei-kitchen', business_name='Mei Kitchen')

    def query(self, name, data=None, token=None, headers=None):
        query_string = {'input': json.dumps(data)} if data is not None else None
        return self.client.get(f'/api/rpc/{name}', query_string=query_string, headers=self.headers(token, headers))

    def mutate(self, name, data=None, token=None, headers=None):
        return self.client.post(f'/api/rpc/{name}', json=data, headers=self.headers(token, headers))

    def headers(self, token, extra=None):
        headers = dict(extra or {})
        if token:
            headers.update(bearer(token))
        return headers


class TestRpc(ApiTestCase):
    def test_public_query(self):
        response = self.query('public.getMerchant', {'slug': 'mei-kitchen'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()['result']['data']['business_name'], 'Mei Kitchen')

    def test_not_found_error_shape(self):
        response = self.query('public.getMerchant', {'slug': 'nobody'})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()['error']['code'], 'NOT_FOUND')

        response = self.query('public.noSuchThing', {})
        self.assertEqual(response.status_code, 404)

    @patch('homejiak.api.log_exception')
    @patch('homejiak.services.merchant_service.MerchantService.get_public_merchant',
           side_effect=RuntimeError('connection reset'))
    def test_unexpected_error_logged(self, lookup, log_exception):
        response = self.query('public.getMerchant', {'slug': 'mei-kitchen'})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.get_json()['error']['code'], 'INTERNAL_SERVER_ERROR')
        name, error, message = log_exception.call_args.args
        self.assertEqual((name, str(error), message), ('homejiak.api', 'connection reset', 'Unhandled error'))

    def test_wrong_method(self):
        response = self.client.post('/api/rpc/public.getMerchant', json={'slug': 'mei-kitchen'})
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.get_json()['error']['code'], 'METHOD_NOT_SUPPORTED')

        response = self.query('checkout.createSession', {'merchant_id': self.merchant.id, 'items': []})
        self.assertEqual(response.status_code, 405)

    def test_input_validation_details(self):
        response = self.mutate('checkout.createSession', {'merchant_id': self.merchant.id, 'items': []})
        self.assertEqual(response.status_code, 400)
        error = response.get_json()['error']
        self.assertEqual(error['code'], 'BAD_REQUEST')
        self.assertEqual(error['details'][0]['path'], 'items')

        response = self.client.get('/api/rpc/public.getMerchant', query_string={'input': '{not json'})
        self.assertEqual(response.status_code, 400)

    def test_access_levels(self):
        response = self.query('order.list', {}, headers={'Referer': 'http://localhost:3000/orders'})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()['error']['redirect'], '/auth?redirect=%2Forders')

        self.assertEqual(self.query('order.list', {}, CUSTOMER_TOKEN).status_code, 403)
        self.assertEqual(self.query('merchant.listPending', None, MERCHANT_TOKEN).status_code, 403)
        self.assertEqual(self.query('merchant.listPending', None, ADMIN_TOKEN).status_code, 200)

    def test_suspended_merchant_forbidden(self):
        self.merchant.status = MerchantStatus.SUSPENDED
        self.session.commit()
        self.assertEqual(self.query('order.list', {}, MERCHANT_TOKEN).status_code, 403)

    def test_checkout_to_tracking(self):
        product = self.make_product(self.merchant, price=Decimal('6.50'), quantity=5)

        created = self.mutate('checkout.createSession', {
            'merchant_id': self.merchant.id,
            'items': [{'product_id': product.id, 'quantity': 2}],
        })
        self.assertEqual(created.status_code, 200)
        session_id = created.get_json()['result']['data']['session_id']

        bad_phone = self.mutate('checkout.complete', {
            'session_id': session_id, 'contact': {'name': 'Tan Ah Kow', 'phone': '12345678'}})
        self.assertEqual(bad_phone.status_code, 400)
        self.assertEqual(bad_phone.get_json()['error']['details'][0]['path'], 'contact.phone')

        completed = self.mutate('checkout.complete', {
            'session_id': session_id, 'contact': {'name': 'Tan Ah Kow', 'phone': '9876 5432'}})
        self.assertEqual(completed.status_code, 200)
        order = completed.get_json()['result']['data']
        self.assertEqual(order['total'], 13.0)

        updated = self.mutate('order.updateStatus', {'order_id': order['order_id'], 'status': 'CONFIRMED'},
                              MERCHANT_TOKEN)
        self.assertEqual(updated.get_json()['result']['data']['status'], 'CONFIRMED')

        tracked = self.query('public.trackOrder', {'order_number': order['order_number'], 'phone': '98765432'})
        self.assertEqual(tracked.get_json()['result']['data']['status'], 'CONFIRMED')

    def test_merchant_creates_product(self):
        response = self.mutate('product.create', {'name': 'Ondeh Ondeh', 'price': 4.5}, MERCHANT_TOKEN)
        data = response.get_json()['result']['data']
        self.assertEqual(data['status'], ProductStatus.DRAFT.value)
        self.assertEqual(data['price'], 4.5)

        listed = self.query('product.list', {}, MERCHANT_TOKEN).get_json()['result']['data']
        self.assertEqual([p['name'] for p in listed['items']], ['Ondeh Ondeh'])

    def test_modifier_groups_priced_at_checkout(self):
        product = self.make_product(self.merchant, price=Decimal('8.00'))
        saved = self.mutate('product.upsertModifierGroup', {
            'product_id': product.id,
            'name': 'Spice level',
            'required': True,
            'modifiers': [{'id': 'temp-1', 'name': 'Mild'}, {'id': 'temp-2', 'name': 'Shiok', 'price_adjustment': 0.5}],
        }, MERCHANT_TOKEN)
        self.assertEqual(saved.status_code, 200)
        shiok = saved.get_json()['result']['data']['modifiers'][1]

        listed = self.query('product.getModifiers', {'product_id': product.id}, MERCHANT_TOKEN)
        self.assertEqual([g['name'] for g in listed.get_json()['result']['data']], ['Spice level'])

        missing = self.mutate('checkout.createSession', {
            'merchant_id': self.merchant.id, 'items': [{'product_id': product.id, 'quantity': 1}]})
        self.assertEqual(missing.status_code, 400)

        created = self.mutate('checkout.createSession', {
            'merchant_id': self.merchant.id,
            'items': [{'product_id': product.id, 'quantity': 2, 'modifiers': [{'modifier_id': shiok['id']}]}],
        })
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.get_json()['result']['data']['subtotal'], 17.0)

        other = self.make_product(self.merchant)
        cloned = self.mutate('product.cloneModifiers', {
            'source_product_id': product.id, 'target_product_id': other.id}, MERCHANT_TOKEN)
        self.assertEqual(cloned.get_json()['result']['data']['group_count'], 1)

    def test_rate_limit(self):
        self.app.extensions['homejiak']['limiters']['public'] = RateLimiter(60, 2)
        for _ in range(2):
            self.assertEqual(self.query('public.getMerchant', {'slug': 'mei-kitchen'}).status_code, 200)

        response = self.query('public.getMerchant', {'slug': 'mei-kitchen'})
        self.assertEqual(response.status_code, 429)
        error = response.get_json()['error']
        self.assertEqual(error['code'], 'TOO_MANY_REQUESTS')
        self.assertGreaterEqual(error['details']['retry_after'], 1)


class TestRestEndpoints(ApiTestCase):
    def test_public_merchant_cache_headers(self):
        first = self.client.get('/api/public/merchants/mei-kitchen')
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.headers['X-Cache'], 'MISS')
        self.assertEqual(first.headers['Cache-Control'], 'public, s-maxage=300, stale-while-revalidate=600')
        self.assertEqual(first.get_json()['merchant']['slug'], 'mei-kitchen')

        second = self.client.get('/api/public/merchants/mei-kitchen')
        self.assertEqual(second.headers['X-Cache'], 'HIT')

        missing = self.client.get('/api/public/merchants/nobody')
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json(), {'success': False, 'error': 'Merchant not found'})
        self.assertEqual(missing.headers['Cache-Control'], 'public, s-maxage=60')

    def test_health(self):
        response = self.client.get('/api/health')
        self.assertEqual(response.get_json(), {'success': True, 'status': 'ok'})

    def test_payment_proof_upload(self):
        order = self.make_order(self.merchant)
        self.storage.upload_payment_proof.return_value = {'url': 'https://cdn.example.com/p.jpg'}

        response = self.client.post('/api/uploads/payment-proof', data={
            'order_id': order.id,
            'transaction_id': 'TXN1',
            'file': (io.BytesIO(b'\xff\xd8\xff' + b'0' * 32), 'proof.jpg', 'image/jpeg'),
        }, content_type='multipart/form-data')

        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual(body['payment_status'], PaymentStatus.PROCESSING.value)
        args = self.storage.upload_payment_proof.call_args.args
        self.assertEqual((args[1], args[2]), ('image/jpeg', order.id))

        self.session.expire_all()
        self.assertEqual(self.session.get(Order, order.id).payment_proof_url, 'https://cdn.example.com/p.jpg')

    def test_payment_proof_upload_errors(self):
        missing_file = self.client.post('/api/uploads/payment-proof', data={'order_id': 'x'},
                                        content_type='multipart/form-data')
        self.assertEqual(missing_file.status_code, 400)

        unknown_order = self.client.post('/api/uploads/payment-proof', data={
            'order_id': 'missing', 'file': (io.BytesIO(b'data'), 'proof.jpg', 'image/jpeg'),
        }, content_type='multipart/form-data')
        self.assertEqual(unknown_order.status_code, 404)
        self.storage.upload_payment_proof.assert_not_called()


class TestOrderStreamEndpoint(ApiTestCase):
    def test_requires_active_merchant(self):
        for headers in (None, bearer(CUSTOMER_TOKEN)):
            response = self.client.get('/api/orders/stream', headers=headers)
            self.assertEqual(response.status_code, 401)
            self.assertEqual(response.get_json(), {'success': False, 'error': 'Unauthorized'})

    def test_connected_event(self):
        response = self.client.get('/api/orders/stream', headers=bearer(MERCHANT_TOKEN))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, 'text/event-stream')
        self.assertEqual(response.headers['X-Accel-Buffering'], 'no')

        body = response.get_data(as_text=True)
        self.assertTrue(body.startswith('data: '))
        event = json.loads(body.split('\n')[0][len('data: '):])
        self.assertEqual(event['type'], 'connected')
        self.assertEqual(event['merchantId'], self.merchant.id)


class TestMerchantPages(ApiTestCase):
    def test_anonymous_redirected_to_auth(self):
        response = self.client.get('/dashboard')
        self.assertEqual(response.status_code, 302)
        self.assertTrue(response.headers['Location'].endswith('/auth?redirect=%2Fdashboard'))

        response = self.client.get('/orders/abc')
        self.assertTrue(response.headers['Location'].endswith('/auth?redirect=%2Forders%2Fabc'))

    def test_customer_sent_home(self):
        response = self.client.get('/dashboard', headers=bearer(CUSTOMER_TOKEN))
        self.assertEqual(response.status_code, 302)
        self.assertIn(response.headers['Location'], ('/', 'http://localhost/'))

    def test_public_paths_not_gated(self):
        self.assertEqual(self.client.get('/api/health').status_code, 200)
        self.assertEqual(self.client.get('/dashboards').status_code, 404)

    def test_merchant_dashboard(self):
        self.make_order(self.merchant, status=OrderStatus.PENDING)
        self.client.set_cookie('sb-access-token', MERCHANT_TOKEN)

        response = self.client.get('/dashboard')

        self.assertEqual(response.status_code, 200)
        dashboard = response.get_json()['dashboard']
        self.assertEqual(dashboard['pending_orders'], 1)
        self.assertEqual(dashboard['notifications'], [])


if __name__ == '__main__':
    unittest.main()
