# homejiak/main.py
import argparse
import json
import sys

from homejiak.config import config
from homejiak.db import db, session_scope
from homejiak.logging_setup import logger, get_logger, log_exception


def init_application(database_url=None):
    """Initialize application components."""
    db.initialize(database_url)

    log = logger.app_logger
    log.info("HomeJiak marketplace initialized")
    return log


def init_db(args):
    log = init_application(args.database_url)
    if args.drop:
        log.info("Dropping all existing tables...")
        db.drop_all_tables()
    log.info("Creating database tables...")
    db.create_all_tables()
    log.info("Database tables created successfully.")
    return 0


def drop_db(args):
    log = init_application(args.database_url)
    if not args.yes:
        log.error("Refusing to drop tables without --yes")
        return 1
    db.drop_all_tables()
    log.info("All tables dropped.")
    return 0


def seed(args):
    from homejiak.scripts.seed import seed_demo_data

    log = init_application(args.database_url)
    slug = seed_demo_data()
    log.info(f"Demo storefront available at /api/public/merchants/{slug}")
    return 0


def serve(args):
    from homejiak.api import create_app

    overrides = {'DATABASE_URL': args.database_url} if args.database_url else None
    if overrides is None:
        init_application()
    app = create_app(overrides)
    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)
    return 0


def expire_sessions(args):
    from homejiak.services.checkout_service import CheckoutService

    log = init_application(args.database_url)
    with session_scope() as session:
        expired = CheckoutService(session).expire_sessions()
    log.info(f"Expired {expired} checkout session(s)")
    return 0


def watch_orders(args):
    """Print live order events for the signed-in merchant."""
    from homejiak.services.order_stream import OrderStreamClient

    log = get_logger('order_watch')

    def on_event(event):
        if event.get('type') == 'heartbeat' and not args.verbose:
            return
        print(json.dumps(event, default=str))
        sys.stdout.flush()

    client = OrderStreamClient(args.base_url, args.token, on_event)
    try:
        client.run(max_connections=args.max_connections)
    except KeyboardInterrupt:
        client.stop()
        log.info("Stopped watching orders")
    return 0


def init_config(args):
    path = config.save()
    print(f"Configuration written to {path}")
    return 0


def main(argv=None):
    """Main application entry point."""
    parser = argparse.ArgumentParser(description='HomeJiak home-kitchen marketplace')
    parser.add_argument('--database-url', help='Database URL (defaults to the configured one)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    init_parser = subparsers.add_parser('init-db', help='Create database tables')
    init_parser.add_argument('--drop', action='store_true', help='Drop existing tables first')
    init_parser.set_defaults(handler=init_db)

    drop_parser = subparsers.add_parser('drop-db', help='Drop all database tables')
    drop_parser.add_argument('--yes', action='store_true', help='Confirm dropping every table')
    drop_parser.set_defaults(handler=drop_db)

    seed_parser = subparsers.add_parser('seed', help='Load a demo merchant and menu')
    seed_parser.set_defaults(handler=seed)

    serve_parser = subparsers.add_parser('serve', help='Run the HTTP API')
    serve_parser.add_argument('--host', default='127.0.0.1')
    serve_parser.add_argument('--port', type=int, default=5000)
    serve_parser.add_argument('--debug', action='store_true')
    serve_parser.set_defaults(handler=serve)

    expire_parser = subparsers.add_parser('expire-sessions', help='Expire stale checkout sessions')
    expire_parser.set_defaults(handler=expire_sessions)

    watch_parser = subparsers.add_parser('watch-orders', help='Follow the live order stream')
    watch_parser.add_argument('--base-url', default='http://localhost:5000')
    watch_parser.add_argument('--token', required=True, help='Merchant access token')
    watch_parser.add_argument('--max-connections', type=int, help='Stop after this many connection attempts')
    watch_parser.add_argument('--verbose', '-v', action='store_true', help='Also print heartbeats')
    watch_parser.set_defaults(handler=watch_orders)

    config_parser = subparsers.add_parser('init-config', help='Write the default settings file')
    config_parser.set_defaults(handler=init_config)

    args = parser.parse_args(argv)
    if not getattr(args, 'handler', None):
        parser.print_help()
        return 1

    try:
        return args.handler(args)
    except Exception as e:
        log_exception('homejiak', e, f"Command {args.command} failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
