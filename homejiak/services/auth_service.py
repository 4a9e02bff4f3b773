# homejiak/services/auth_service.py
import logging
from typing import Any, Dict, Optional

from supabase import Client, create_client

from homejiak.config import config
from homejiak.exceptions import ConfigError

logger = logging.getLogger(__name__)

MERCHANT = 'merchant'
CUSTOMER = 'customer'
ADMIN = 'admin'


class AuthUser:
    """Authenticated user resolved from an access token."""

    def __init__(self, id: str, email: Optional[str] = None, metadata: Optional[Dict[str, Any]] = None):
        self.id = id
        self.email = email
        self.metadata = metadata or {}

    @property
    def user_type(self) -> str:
        return self.metadata.get('userType') or self.metadata.get('user_type') or CUSTOMER

    @property
    def is_merchant(self) -> bool:
        return self.user_type == MERCHANT

    @property
    def is_admin(self) -> bool:
        return self.user_type == ADMIN

    def __repr__(self):
        return f"<AuthUser {self.id} ({self.user_type})>"


class AuthService:
    """Resolves Supabase access tokens into users."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize the auth service.

        Args:
            client: Supabase client; built from configuration when omitted
        """
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            settings = config.supabase_config
            if not settings['url'] or not settings['anon_key']:
                raise ConfigError("Supabase url and anon_key must be configured")
            self._client = create_client(settings['url'], settings['anon_key'])
        return self._client

    def get_user(self, access_token: Optional[str]) -> Optional[AuthUser]:
        """Look up the user for an access token.

        Args:
            access_token: JWT issued by Supabase auth

        Returns:
            AuthUser, or None when the token is missing or rejected
        """
        if not access_token:
            return None

        try:
            response = self.client.auth.get_user(access_token)
        except ConfigError:
            raise
        except Exception as e:
            logger.warning(f"Access token rejected: {e}")
            return None

        user = getattr(response, 'user', None)
        if user is None:
            return None
        return AuthUser(id=user.id, email=user.email, metadata=user.user_metadata)
