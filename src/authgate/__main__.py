"""authgate entry point.

Examples:
  authgate serve                     Start the API server
  authgate serve --dev               Start with auto-reload
  authgate session-token alice       Mint a development session token for user "alice"
  authgate purge-expired             Delete expired codes and tokens
"""

import argparse
import logging

from authgate import __version__
from authgate.config import get_settings
from authgate.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="authgate - OAuth 2.0 authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("\n", 2)[2],
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Start the API server")
    serve.add_argument("--host", default=None, help="Bind address (default: settings.api_host)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: settings.api_port)")
    serve.add_argument("--dev", action="store_true", help="Auto-reload on source changes")

    token = sub.add_parser("session-token", help="Mint a session token for a user id")
    token.add_argument("user_id")
    token.add_argument("--ttl-hours", type=int, default=None)

    sub.add_parser("purge-expired", help="Delete expired codes and tokens")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(level=settings.log_level)

    if args.command == "serve":
        from authgate.api.serve import run_api_server

        try:
            run_api_server(
                host=args.host or settings.api_host,
                port=args.port or settings.api_port,
                dev=args.dev,
            )
        except KeyboardInterrupt:
            logger.info("authgate stopped.")
        return 0

    if args.command == "session-token":
        from authgate.security.session_tokens import create_session_token

        ttl = args.ttl_hours or settings.session_token_ttl_hours
        print(create_session_token(args.user_id, ttl_hours=ttl))
        return 0

    if args.command == "purge-expired":
        from authgate.api.oauth2.server import get_oauth_server

        removed = get_oauth_server().purge_expired()
        print(f"Purged {removed} expired rows")
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
