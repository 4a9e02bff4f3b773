# homejiak/api/__init__.py

"""
Flask application factory for the HomeJiak HTTP API.
"""

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from homejiak.api.auth import gate_merchant_pages
from homejiak.api.routes import pages_bp, public_bp, stream_bp, uploads_bp
from homejiak.api.rpc import build_limiters, registry, rpc_bp
from homejiak.config import config
from homejiak.db import db
from homejiak.exceptions import HomejiakError
from homejiak.logging_setup import log_exception
from homejiak.services.auth_service import AuthService
from homejiak.services.storage_service import StorageService

# Registers every procedure on the shared registry
from homejiak.api import procedures  # noqa: F401

logger = logging.getLogger(__name__)


def create_app(overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """Create the Flask application.

    Args:
        overrides: Flask config values. ``DATABASE_URL`` re-initializes the
            database; ``AUTH_SERVICE``, ``STORAGE_SERVICE`` and
            ``RATE_LIMITERS`` replace the default collaborators.

    Returns:
        Configured Flask app
    """
    app = Flask(__name__)
    app.config['SECRET_KEY'] = config.get('APP', 'secret_key')
    app.config['MAX_CONTENT_LENGTH'] = 6 * 1024 * 1024
    if overrides:
        app.config.update(overrides)

    if app.config.get('DATABASE_URL'):
        db.initialize(app.config['DATABASE_URL'])

    origins = [o.strip() for o in config.get('APP', 'allowed_origins', '').split(',') if o.strip()]
    CORS(app, origins=origins, supports_credentials=True)

    limiters = app.config.get('RATE_LIMITERS') or build_limiters({
        'window_seconds': config.get_float('RATE_LIMIT', 'window_seconds', 60.0),
        'max_requests': config.get_int('RATE_LIMIT', 'max_requests', 100),
        'checkout_max_requests': config.get_int('RATE_LIMIT', 'checkout_max_requests', 10),
    })
    app.extensions['homejiak'] = {
        'auth': app.config.get('AUTH_SERVICE') or AuthService(),
        'storage': app.config.get('STORAGE_SERVICE') or StorageService(),
        'limiters': limiters,
    }

    app.before_request(gate_merchant_pages)

    app.register_blueprint(rpc_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(stream_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(pages_bp)

    @app.errorhandler(HomejiakError)
    def handle_homejiak_error(error):
        return jsonify({'success': False, 'error': error.to_dict()}), error.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({
            'success': False,
            'error': {'code': error.name.upper().replace(' ', '_'), 'message': error.description},
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        log_exception(__name__, error, "Unhandled error")
        return jsonify({
            'success': False,
            'error': {'code': 'INTERNAL_SERVER_ERROR', 'message': 'Internal server error'},
        }), 500

    @app.teardown_appcontext
    def remove_session(exception=None):
        db.session.remove()

    logger.info(f"HomeJiak API ready with {len(registry)} procedures")
    return app


__all__ = ['create_app']
