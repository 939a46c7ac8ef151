"""
Print a bearer token for bootstrap and manual testing.

    personal-context-token --subject test --scope write:users --scope read:users

Reads JWT_SECRET (and TOKEN_TTL_SECONDS) the same way the server does; the
token is valid for one hour by default.
"""
import argparse
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from personal_context.config import load_auth_config
from personal_context.security import AuthGate


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Issue a bearer token for the personal context server")
    parser.add_argument("--subject", default="test", help="subject (user id) carried in the token")
    parser.add_argument(
        "--scope",
        dest="scopes",
        action="append",
        default=[],
        help="scope to grant, e.g. write:contacts (repeatable)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if os.getenv("ENV", "development").lower() == "development":
        load_dotenv(Path.cwd() / ".env")
    try:
        config = load_auth_config()
    except RuntimeError as e:
        print(e, file=sys.stderr)
        return 1
    token = AuthGate(config).generate_token(args.subject, args.scopes)
    print(f"{config.token_prefix}{token}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
