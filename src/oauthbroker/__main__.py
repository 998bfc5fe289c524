"""oauthbroker entry point.

Commands:
  serve         run the broker HTTP server (default)
  init-db       create the schema on SQL_URL
  sweep         delete expired sessions, codes and tokens
  add-client    provision a client application
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from oauthbroker.config import get_settings
from oauthbroker.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return get_version("oauthbroker")
    except PackageNotFoundError:
        from oauthbroker import __version__

        return __version__


def _database():
    from oauthbroker.broker.database import Database

    db = Database(get_settings().sql_url)
    db.create_all()
    return db


def cmd_serve(args: argparse.Namespace) -> int:
    settings = get_settings()
    if not settings.oauth2_client_id:
        logger.error("OAUTH2_CLIENT_ID is not set; refusing to start")
        return 1

    from oauthbroker.api.app import run_server

    host = args.host or settings.host
    port = args.port or settings.port
    run_server(host=host, port=port, dev=args.dev)
    return 0


def cmd_init_db(args: argparse.Namespace) -> int:
    db = _database()
    logger.info("Schema created on %s", db.engine.url.render_as_string(hide_password=True))
    db.dispose()
    return 0


def cmd_sweep(args: argparse.Namespace) -> int:
    db = _database()
    try:
        db.sweep_expired()
    finally:
        db.dispose()
    return 0


def cmd_add_client(args: argparse.Namespace) -> int:
    from oauthbroker.broker.clients import ClientRegistry
    from oauthbroker.broker.models import OAuthClient
    from oauthbroker.security.tokens import TokenCodec

    secret = args.secret or TokenCodec().generate_random(32)
    db = _database()
    try:
        ClientRegistry(db).register(
            OAuthClient(client_id=args.id, secret=secret, redirect_uri=args.redirect_uri)
        )
    finally:
        db.dispose()
    if not args.secret:
        print(secret)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oauthbroker",
        description="OAuth2 broker gateway in front of a single upstream identity provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  oauthbroker                                   Start the broker (same as 'serve')
  oauthbroker serve --port 9000                 Start on another port
  oauthbroker init-db                           Create tables on SQL_URL
  oauthbroker sweep                             Delete expired rows (run from cron)
  oauthbroker add-client --id web --redirect-uri 'https://app.example.com/*'
""",
    )
    parser.add_argument(
        "--version",
        "-v",
        action="version",
        version=f"%(prog)s {_package_version()}",
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the broker HTTP server")
    serve.add_argument("--host", type=str, default=None, help="Bind address (default: HOST)")
    serve.add_argument("--port", "-p", type=int, default=None, help="Port (default: PORT)")
    serve.add_argument("--dev", action="store_true", help="Development mode with auto-reload")
    serve.set_defaults(func=cmd_serve)

    init_db = sub.add_parser("init-db", help="Create the database schema")
    init_db.set_defaults(func=cmd_init_db)

    sweep = sub.add_parser("sweep", help="Delete expired sessions, codes and tokens")
    sweep.set_defaults(func=cmd_sweep)

    add_client = sub.add_parser("add-client", help="Provision a client application")
    add_client.add_argument("--id", required=True, help="Public client id")
    add_client.add_argument(
        "--redirect-uri",
        required=True,
        help="Redirect URI pattern; '*' matches any characters",
    )
    add_client.add_argument(
        "--secret", default=None, help="Client secret (default: generated and printed)"
    )
    add_client.set_defaults(func=cmd_add_client)

    return parser


def main() -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if args.command is None:
        args = parser.parse_args(["serve"])

    setup_logging(level=get_settings().log_level)

    try:
        raise SystemExit(args.func(args))
    except KeyboardInterrupt:
        logger.info("Broker stopped.")


if __name__ == "__main__":
    main()
