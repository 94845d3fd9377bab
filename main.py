#!/usr/bin/env python3
"""
AuthGate -- credential verification and token issuance service.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py serve --reload
  python main.py sweep

Environment variables (or .env):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to sqlite:///./authgate.db
  DEBUG          true for local development (generates a throwaway SECRET_KEY).
"""

import argparse
import logging
import sys

from pydantic import ValidationError

from auth.errors import StoreFailedError
from auth.hashing import CredentialHasher
from auth.service import AuthService
from auth.store import SQLIdentityDirectory, SQLRefreshTokenStore, create_db_engine
from auth.tokens import TokenSigner
from core.config import get_settings

logger = logging.getLogger("authgate.cli")


def _serve(args: argparse.Namespace) -> int:
    """Run the API under uvicorn. Settings are validated by the app's lifespan."""
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _sweep(args: argparse.Namespace) -> int:
    """Delete expired refresh tokens once and report how many went.

    Same AuthService.sweep_expired() the API runs on a timer, for cron jobs
    and deployments that set SWEEP_INTERVAL_SECONDS=0.
    """
    settings = get_settings()
    engine = create_db_engine(settings.database_url)
    service = AuthService(
        directory=SQLIdentityDirectory(engine),
        tokens=SQLRefreshTokenStore(engine),
        hasher=CredentialHasher(cost=settings.bcrypt_cost),
        signer=TokenSigner(settings.secret_key, settings.access_token_ttl_seconds, issuer=settings.token_issuer),
        refresh_ttl_seconds=settings.refresh_token_ttl_seconds,
    )
    try:
        removed = service.sweep_expired()
    except StoreFailedError as e:
        logger.error("Sweep failed: %s", e.reason, exc_info=True)
        print(f"  [!] Sweep failed: {e.reason}")
        return 1
    finally:
        engine.dispose()
    print(f"  Removed {removed} expired refresh token(s).")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Credential verification, token issuance, rotation and revocation.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve
  python main.py serve --port 8080 --reload
  DATABASE_URL=postgresql://... python main.py sweep
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    sweep = sub.add_parser("sweep", help="Delete expired refresh tokens once and exit")
    sweep.set_defaults(func=_sweep)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        return args.func(args)
    except ValidationError as e:
        # Settings refused to load, e.g. SECRET_KEY missing outside DEBUG.
        print(f"  [!] Invalid configuration:\n{e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
