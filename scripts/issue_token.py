#!/usr/bin/env python3
"""Issue a bearer token for an identity using the server's secret key.

Usage:
  python scripts/issue_token.py alice@example.com --ttl 3600

Environment fallbacks:
  SECRET_KEY, TOKEN_TTL_SECONDS (read through the application settings)
"""
from __future__ import annotations

import argparse
import sys

from chatrelay.auth import TokenAuthenticator
from chatrelay.config import Settings


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="chatrelay token issuer")
    parser.add_argument("identity", help="Caller identity to embed in the token")
    parser.add_argument("--ttl", type=int, default=None, help="Lifetime in seconds")
    parser.add_argument("--secret-key", default=None, help="Overrides SECRET_KEY")
    return parser.parse_args(argv)


def exit_with(message: str, code: int = 1) -> None:
    print(message, file=sys.stderr)
    raise SystemExit(code)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    settings = Settings()

    secret_key = args.secret_key or settings.secret_key
    if not args.secret_key and "secret_key" not in settings.model_fields_set:
        exit_with("SECRET_KEY is not configured; tokens would not verify on the server")

    ttl = args.ttl if args.ttl is not None else settings.token_ttl_seconds
    print(TokenAuthenticator(secret_key, ttl_seconds=ttl).issue(args.identity))


if __name__ == "__main__":
    main()
