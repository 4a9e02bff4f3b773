"""
Tests for the Supabase-backed auth and storage services.
"""
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from homejiak.exceptions import ConfigError, StorageError, ValidationError
from homejiak.services.auth_service import AuthService, AuthUser
from homejiak.services.storage_service import MAX_UPLOAD_BYTES, StorageService, validate_upload

JPEG = b'\xff\xd8\xff\xe0' + b'0' * 64


class TestAuthService(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.service = AuthService(client=self.client)

    def test_get_user(self):
        self.client.auth.get_user.return_value = SimpleNamespace(user=SimpleNamespace(
            id='user-1', email='mei@example.com', user_metadata={'userType': 'merchant'}))

        user = self.service.get_user('jwt-token')

        self.client.auth.get_user.assert_called_once_with('jwt-token')
        self.assertEqual(user.id, 'user-1')
        self.assertTrue(user.is_merchant)
        self.assertFalse(user.is_admin)

    def test_missing_or_rejected_token(self):
        self.assertIsNone(self.service.get_user(''))
        self.client.auth.get_user.assert_not_called()

        self.client.auth.get_user.side_effect = Exception('invalid JWT')
        self.assertIsNone(self.service.get_user('expired'))

    def test_response_without_user(self):
        self.client.auth.get_user.return_value = SimpleNamespace(user=None)
        self.assertIsNone(self.service.get_user('jwt-token'))

    def test_unconfigured_client(self):
        with patch('homejiak.services.auth_service.config') as config:
            config.supabase_config = {'url': '', 'anon_key': ''}
            with self.assertRaises(ConfigError):
                AuthService().get_user('jwt-token')

    def test_user_type_defaults_to_customer(self):
        self.assertEqual(AuthUser('u').user_type, 'customer')
        self.assertTrue(AuthUser('u', metadata={'user_type': 'admin'}).is_admin)


class TestValidateUpload(unittest.TestCase):
    def test_allowed_types(self):
        self.assertEqual(validate_upload(JPEG, 'image/jpeg'), 'jpg')
        self.assertEqual(validate_upload(JPEG, 'IMAGE/PNG; charset=binary'), 'png')

    def test_rejected(self):
        for data, content_type in ((b'', 'image/jpeg'),
                                   (b'0' * (MAX_UPLOAD_BYTES + 1), 'image/jpeg'),
                                   (JPEG, 'application/pdf'),
                                   (JPEG, None)):
            with self.subTest(content_type=content_type, size=len(data)):
                with self.assertRaises(ValidationError):
                    validate_upload(data, content_type)


class TestStorageService(unittest.TestCase):
    def setUp(self):
        self.client = MagicMock()
        self.bucket = self.client.storage.from_.return_value
        self.bucket.get_public_url.return_value = 'https://cdn.example.com/proof.jpg'
        self.service = StorageService(client=self.client, bucket='uploads')

    def test_upload_payment_proof(self):
        result = self.service.upload_payment_proof(JPEG, 'image/jpeg', 'order-1')

        self.client.storage.from_.assert_called_with('uploads')
        kwargs = self.bucket.upload.call_args.kwargs
        self.assertTrue(kwargs['path'].startswith('payments/order-1/'))
        self.assertTrue(kwargs['path'].endswith('.jpg'))
        self.assertEqual(kwargs['file_options']['cache-control'], '3600')
        self.assertEqual(result['url'], 'https://cdn.example.com/proof.jpg')
        self.assertEqual(result['size'], len(JPEG))

    def test_product_image_folder(self):
        result = self.service.upload_product_image(JPEG, 'image/webp', 'product-9')
        self.assertTrue(result['path'].startswith('products/product-9/'))
        self.assertTrue(result['path'].endswith('.webp'))

    def test_upload_failure_wrapped(self):
        self.bucket.upload.side_effect = RuntimeError('bucket not found')
        with self.assertRaises(StorageError):
            self.service.upload_payment_proof(JPEG, 'image/jpeg', 'order-1')

    def test_invalid_upload_never_reaches_storage(self):
        with self.assertRaises(ValidationError):
            self.service.upload(JPEG, 'image/gif', 'payment_proof', 'order-1')
        with self.assertRaises(ValidationError):
            self.service.upload(JPEG, 'image/jpeg', 'avatar', 'order-1')
        self.bucket.upload.assert_not_called()

    def test_delete(self):
        self.assertTrue(self.service.delete('payments/order-1/a.jpg'))
        self.bucket.remove.assert_called_once_with(['payments/order-1/a.jpg'])
        self.bucket.remove.side_effect = RuntimeError('denied')
        with self.assertRaises(StorageError):
            self.service.delete('payments/order-1/a.jpg')


if __name__ == '__main__':
    unittest.main()
