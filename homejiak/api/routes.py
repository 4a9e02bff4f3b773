# homejiak/api/routes.py

"""
REST endpoints next to the RPC endpoint: public merchant lookup, the live
order stream, payment proof uploads, the merchant dashboard summary and a
health check.
"""

import logging

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from homejiak.api.auth import merchant_required, require_merchant
from homejiak.db import db, get_session
from homejiak.exceptions import ForbiddenError, HomejiakError, UnauthorizedError, ValidationError
from homejiak.services.merchant_service import MerchantService
from homejiak.services.notification_service import NotificationService
from homejiak.services.order_service import OrderService
from homejiak.services.order_stream import OrderStreamPoller, format_sse
from homejiak.services.payment_service import PaymentService
from homejiak.utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

CACHE_CONTROL_HIT = 'public, s-maxage=300, stale-while-revalidate=600'
CACHE_CONTROL_NOT_FOUND = 'public, s-maxage=60'

public_bp = Blueprint('public', __name__, url_prefix='/api/public')
stream_bp = Blueprint('stream', __name__, url_prefix='/api/orders')
uploads_bp = Blueprint('uploads', __name__, url_prefix='/api/uploads')
pages_bp = Blueprint('pages', __name__)


def _client_ip():
    forwarded = request.headers.get('X-Forwarded-For', '')
    return forwarded.split(',')[0].strip() or request.remote_addr


def _limit(name: str, scope: str):
    limiter = current_app.extensions['homejiak']['limiters'][name]
    limiter.check(RateLimiter.build_key(scope, None, _client_ip()))


@public_bp.route('/merchants/<slug>', methods=['GET'])
def get_public_merchant(slug):
    """Storefront data for a merchant slug, cached."""
    try:
        _limit('public', 'rest.merchant')
        data, from_cache = MerchantService(get_session()).lookup_public_merchant(
            slug, referrer=request.referrer, user_agent=request.user_agent.string or None)
    except HomejiakError as e:
        return jsonify({'success': False, 'error': e.to_dict()}), e.http_status

    if data is None:
        response = jsonify({'success': False, 'error': 'Merchant not found'})
        response.status_code = 404
        response.headers['Cache-Control'] = CACHE_CONTROL_NOT_FOUND
        return response

    response = jsonify({'success': True, 'merchant': data})
    response.headers['X-Cache'] = 'HIT' if from_cache else 'MISS'
    response.headers['Cache-Control'] = CACHE_CONTROL_HIT
    return response


@stream_bp.route('/stream', methods=['GET'])
def order_stream():
    """Server-Sent Events feed of the merchant's new and updated orders."""
    try:
        merchant = require_merchant(active_only=True)
    except (UnauthorizedError, ForbiddenError) as e:
        logger.info(f"Order stream refused: {e}")
        return jsonify({'success': False, 'error': 'Unauthorized'}), 401

    poller = OrderStreamPoller(db.session_factory, merchant.id)
    max_polls = current_app.config.get('STREAM_MAX_POLLS')
    logger.info(f"Order stream opened for merchant {merchant.id}")

    def generate():
        for event in poller.stream(max_polls=max_polls):
            yield format_sse(event)

    response = Response(stream_with_context(generate()), mimetype='text/event-stream')
    response.headers['Cache-Control'] = 'no-cache, no-transform'
    response.headers['Connection'] = 'keep-alive'
    response.headers['X-Accel-Buffering'] = 'no'
    return response


@uploads_bp.route('/payment-proof', methods=['POST'])
def upload_payment_proof():
    """Multipart upload of a PayNow screenshot for an order.

    Form fields: ``order_id``, ``file`` and optionally ``transaction_id``.
    """
    session = get_session()
    payments = PaymentService(session)
    try:
        _limit('checkout', 'rest.payment-proof')
        order_id = request.form.get('order_id')
        upload = request.files.get('file')
        if not order_id or upload is None:
            raise ValidationError("order_id and file are required")

        payments.get_status(order_id)
        storage = current_app.extensions['homejiak']['storage']
        stored = storage.upload_payment_proof(upload.read(), upload.mimetype, order_id)
        order = payments.upload_proof(order_id, stored['url'], request.form.get('transaction_id'))
    except HomejiakError as e:
        return jsonify({'success': False, 'error': e.to_dict()}), e.http_status

    return jsonify({
        'success': True,
        'url': stored['url'],
        'order_id': order.id,
        'payment_status': order.payment_status.value,
    }), 201


@pages_bp.route('/dashboard', methods=['GET'])
@merchant_required
def dashboard(merchant):
    """Merchant dashboard summary."""
    session = get_session()
    summary = OrderService(session).get_dashboard_summary(merchant.id)
    summary['notifications'] = [n.to_dict() for n in NotificationService(session).recent(merchant.id)]
    return jsonify({'success': True, 'dashboard': summary})


@pages_bp.route('/api/health', methods=['GET'])
def health():
    try:
        db.test_connection()
    except HomejiakError as e:
        logger.error(f"Health check failed: {e}")
        return jsonify({'success': False, 'status': 'unhealthy', 'error': e.message}), 503
    return jsonify({'success': True, 'status': 'ok'})
