# homejiak/api/auth.py
import functools
import logging
from typing import Optional
from urllib.parse import urlencode

from flask import current_app, g, jsonify, redirect, request

from homejiak.config import config
from homejiak.db import get_session
from homejiak.exceptions import ForbiddenError, UnauthorizedError
from homejiak.models import Merchant, MerchantStatus
from homejiak.services.auth_service import AuthUser
from homejiak.services.merchant_service import MerchantService

logger = logging.getLogger(__name__)

ACCESS_COOKIE = 'sb-access-token'

# Page paths that need a signed-in merchant
MERCHANT_PAGE_PREFIXES = ('/dashboard', '/orders', '/products', '/analytics', '/settings')


def access_token_from_request() -> Optional[str]:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.headers.get('Authorization', '')
    if header.lower().startswith('bearer '):
        return header[7:].strip() or None
    return request.cookies.get(ACCESS_COOKIE)


def current_user() -> Optional[AuthUser]:
    """The signed-in user for this request, resolved once."""
    if 'auth_user' not in g:
        auth = current_app.extensions['homejiak']['auth']
        g.auth_user = auth.get_user(access_token_from_request())
    return g.auth_user


def current_merchant() -> Optional[Merchant]:
    """The merchant owned by the signed-in user, resolved once."""
    if 'merchant' not in g:
        user = current_user()
        g.merchant = MerchantService(get_session()).get_merchant_for_user(user.id) if user else None
    return g.merchant


def require_merchant(active_only: bool = False) -> Merchant:
    """Return the caller's merchant or raise.

    Raises:
        UnauthorizedError when nobody is signed in
        ForbiddenError when the user has no usable merchant account
    """
    user = current_user()
    if user is None:
        raise UnauthorizedError("Authentication required")
    merchant = current_merchant()
    if merchant is None:
        raise ForbiddenError("Merchant access required")
    if merchant.status == MerchantStatus.SUSPENDED:
        raise ForbiddenError("Merchant account is suspended")
    if active_only and merchant.status != MerchantStatus.ACTIVE:
        raise ForbiddenError("Merchant account is not active")
    return merchant


def auth_redirect_url(path: str) -> str:
    return f"{config.get('APP', 'auth_path', '/auth')}?{urlencode({'redirect': path})}"


def gate_merchant_pages():
    """``before_request`` hook guarding the merchant dashboard pages.

    Anonymous visitors are sent to the auth page with a ``redirect`` back to
    where they were going; signed-in non-merchants go to the home page.
    """
    path = request.path
    if not any(path == prefix or path.startswith(prefix + '/') for prefix in MERCHANT_PAGE_PREFIXES):
        return None

    user = current_user()
    if user is None:
        return redirect(auth_redirect_url(path))
    if not user.is_merchant:
        logger.info(f"Non-merchant user {user.id} sent home from {path}")
        return redirect('/')
    return None


def merchant_required(view):
    """Decorator for REST handlers: 401/403 JSON instead of a redirect."""
    @functools.wraps(view)
    def wrapper(*args, **kwargs):
        try:
            merchant = require_merchant(active_only=True)
        except (UnauthorizedError, ForbiddenError) as e:
            return jsonify({'success': False, 'error': e.to_dict()}), e.http_status
        return view(merchant, *args, **kwargs)
    return wrapper
