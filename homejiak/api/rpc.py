# homejiak/api/rpc.py

"""
Typed RPC endpoint.

Procedures are registered by name (``namespace.action``) with an input
model, an access level and an optional rate limit. Queries are called with
GET and a JSON ``input`` query parameter, mutations with POST and a JSON
body. Results are returned as ``{"result": {"data": ...}}`` and failures as
``{"error": {"code", "message"}}`` with the matching HTTP status.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional, Type
from urllib.parse import urlparse

from flask import Blueprint, current_app, jsonify, request
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from sqlalchemy.exc import SQLAlchemyError

from homejiak.api.auth import auth_redirect_url, current_user, require_merchant
from homejiak.db import get_session
from homejiak.exceptions import (
    ForbiddenError, HomejiakError, MethodNotSupportedError, NotFoundError, UnauthorizedError,
    ValidationError, handle_database_error
)
from homejiak.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

PUBLIC = 'public'
PROTECTED = 'protected'
MERCHANT = 'merchant'
ADMIN = 'admin'
ACCESS_LEVELS = (PUBLIC, PROTECTED, MERCHANT, ADMIN)

rpc_bp = Blueprint('rpc', __name__, url_prefix='/api/rpc')


class Procedure:
    """A registered RPC procedure."""

    def __init__(self, name: str, handler: Callable, schema: Optional[Type[BaseModel]] = None,
                 access: str = PUBLIC, mutation: bool = False, rate_limit: Optional[str] = None):
        if access not in ACCESS_LEVELS:
            raise ValueError(f"Unknown access level: {access}")
        self.name = name
        self.handler = handler
        self.schema = schema
        self.access = access
        self.mutation = mutation
        self.rate_limit = rate_limit

    def __repr__(self):
        kind = 'mutation' if self.mutation else 'query'
        return f"<Procedure {self.name} ({kind}, {self.access})>"


class Registry:
    """Name to procedure lookup."""

    def __init__(self):
        self._procedures: Dict[str, Procedure] = {}

    def procedure(self, name: str, schema: Optional[Type[BaseModel]] = None, access: str = PUBLIC,
                  mutation: bool = False, rate_limit: Optional[str] = None):
        """Decorator registering a handler ``fn(ctx, data)``."""
        def decorator(handler):
            if name in self._procedures:
                raise ValueError(f"Procedure already registered: {name}")
            self._procedures[name] = Procedure(name, handler, schema, access, mutation, rate_limit)
            return handler
        return decorator

    def get(self, name: str) -> Optional[Procedure]:
        return self._procedures.get(name)

    def names(self):
        return sorted(self._procedures)

    def __contains__(self, name):
        return name in self._procedures

    def __len__(self):
        return len(self._procedures)


registry = Registry()


class Context:
    """Per-call state handed to procedure handlers."""

    def __init__(self, session, user=None, merchant=None, ip_address: Optional[str] = None,
                 user_agent: Optional[str] = None, referrer: Optional[str] = None):
        self.session = session
        self.user = user
        self.merchant = merchant
        self.ip_address = ip_address
        self.user_agent = user_agent
        self.referrer = referrer

    @property
    def merchant_id(self) -> Optional[str]:
        return self.merchant.id if self.merchant is not None else None

    @property
    def actor(self) -> Optional[str]:
        return self.user.id if self.user is not None else None


def build_limiters(settings: Dict[str, Any]) -> Dict[str, RateLimiter]:
    """Rate limiters by name, from the RATE_LIMIT settings."""
    window = settings['window_seconds']
    return {
        'public': RateLimiter(window, settings['max_requests']),
        'checkout': RateLimiter(window, settings['checkout_max_requests']),
    }


def error_response(error: HomejiakError):
    body = {'code': error.code, 'message': error.message}
    if error.details:
        body['details'] = error.details
    if isinstance(error, (UnauthorizedError, ForbiddenError)):
        page = urlparse(request.referrer).path if request.referrer else '/'
        body['redirect'] = auth_redirect_url(page or '/')
    return jsonify({'error': body}), error.http_status


def _raw_input() -> Any:
    if request.method == 'GET':
        raw = request.args.get('input')
        if raw is None or raw == '':
            return None
        try:
            return json.loads(raw)
        except ValueError:
            raise ValidationError("Input is not valid JSON")
    if not request.data:
        return None
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Request body is not valid JSON")
    return data


def _parse_input(procedure: Procedure, raw: Any):
    if procedure.schema is None:
        return raw
    try:
        return procedure.schema.model_validate(raw if raw is not None else {})
    except SchemaError as e:
        details = [
            {'path': '.'.join(str(part) for part in err['loc']), 'message': err['msg']}
            for err in e.errors()
        ]
        raise ValidationError("Invalid input", details=details)


def _authorize(procedure: Procedure) -> Context:
    user = current_user()
    merchant = None
    if procedure.access != PUBLIC and user is None:
        raise UnauthorizedError("You must be signed in")
    if procedure.access == MERCHANT:
        merchant = require_merchant()
    elif procedure.access == ADMIN and not user.is_admin:
        raise ForbiddenError("Administrator access required")

    return Context(
        get_session(),
        user=user,
        merchant=merchant,
        ip_address=request.headers.get('X-Forwarded-For', request.remote_addr or '').split(',')[0].strip() or None,
        user_agent=request.user_agent.string or None,
        referrer=request.referrer,
    )


def call(procedure: Procedure):
    """Run one procedure for the current request and return its result."""
    if procedure.mutation and request.method != 'POST':
        raise MethodNotSupportedError(f"{procedure.name} is a mutation; use POST")
    if not procedure.mutation and request.method != 'GET':
        raise MethodNotSupportedError(f"{procedure.name} is a query; use GET")

    ctx = _authorize(procedure)

    if procedure.rate_limit:
        limiter = current_app.extensions['homejiak']['limiters'][procedure.rate_limit]
        limiter.check(RateLimiter.build_key(procedure.name, ctx.actor, ctx.ip_address))

    data = _parse_input(procedure, _raw_input())
    return procedure.handler(ctx, data)


@rpc_bp.route('/<procedure_name>', methods=['GET', 'POST'])
def dispatch(procedure_name):
    """Dispatch a call to a registered procedure."""
    procedure = registry.get(procedure_name)
    try:
        if procedure is None:
            raise NotFoundError(f"No procedure named {procedure_name}")
        try:
            result = call(procedure)
        except SQLAlchemyError as e:
            get_session().rollback()
            handle_database_error(e)
    except HomejiakError as e:
        if e.http_status >= 500:
            logger.error(f"RPC {procedure_name} failed: {e}")
        return error_response(e)

    return jsonify({'result': {'data': result}})
