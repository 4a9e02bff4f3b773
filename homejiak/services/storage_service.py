# homejiak/services/storage_service.py
import logging
import time
import uuid
from typing import Dict, Optional

from supabase import Client, create_client

from homejiak.config import config
from homejiak.exceptions import ConfigError, StorageError, ValidationError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
ALLOWED_CONTENT_TYPES = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/webp': 'webp',
}

# Folder and cache lifetime per upload kind
UPLOAD_KINDS = {
    'payment_proof': ('payments', '3600'),
    'product_image': ('products', '31536000'),
    'merchant_logo': ('merchants', '604800'),
}


def validate_upload(data: bytes, content_type: Optional[str]) -> str:
    """Check an upload's type and size.

    Returns:
        File extension for the content type

    Raises:
        ValidationError if the file is empty, too large or not an allowed image
    """
    if not data:
        raise ValidationError("File is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit")
    extension = ALLOWED_CONTENT_TYPES.get((content_type or '').split(';')[0].strip().lower())
    if extension is None:
        allowed = ', '.join(sorted(ALLOWED_CONTENT_TYPES))
        raise ValidationError(f"Unsupported file type: {content_type}. Allowed: {allowed}")
    return extension


class StorageService:
    """Uploads images to a Supabase storage bucket."""

    def __init__(self, client: Optional[Client] = None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or config.supabase_config['storage_bucket']

    @property
    def client(self) -> Client:
        if self._client is None:
            settings = config.supabase_config
            key = settings['service_key'] or settings['anon_key']
            if not settings['url'] or not key:
                raise ConfigError("Supabase url and service_key must be configured")
            self._client = create_client(settings['url'], key)
        return self._client

    def upload(self, data: bytes, content_type: str, kind: str, owner_id: str) -> Dict:
        """Upload a file and return where it can be fetched.

        Args:
            data: File contents
            content_type: MIME type reported by the client
            kind: payment_proof, product_image or merchant_logo
            owner_id: Order, product or merchant the file belongs to

        Returns:
            Dictionary with url, path, size and mime_type
        """
        if kind not in UPLOAD_KINDS:
            raise ValidationError(f"Unknown upload kind: {kind}")
        extension = validate_upload(data, content_type)
        folder, cache_control = UPLOAD_KINDS[kind]
        path = f"{folder}/{owner_id}/{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}.{extension}"

        bucket = self.client.storage.from_(self.bucket)
        try:
            bucket.upload(
                path=path,
                file=data,
                file_options={'content-type': content_type, 'cache-control': cache_control, 'upsert': 'false'},
            )
        except Exception as e:
            logger.error(f"Upload of {path} failed: {e}")
            raise StorageError(f"Upload failed: {e}") from e

        url = bucket.get_public_url(path)
        logger.info(f"Uploaded {kind} for {owner_id} to {path} ({len(data)} bytes)")
        return {'url': url, 'path': path, 'size': len(data), 'mime_type': content_type}

    def upload_payment_proof(self, data: bytes, content_type: str, order_id: str) -> Dict:
        return self.upload(data, content_type, 'payment_proof', order_id)

    def upload_product_image(self, data: bytes, content_type: str, product_id: str) -> Dict:
        return self.upload(data, content_type, 'product_image', product_id)

    def delete(self, path: str) -> bool:
        try:
            self.client.storage.from_(self.bucket).remove([path])
        except Exception as e:
            raise StorageError(f"Delete failed: {e}") from e
        return True
