#!/usr/bin/env python3
"""
PatronAuth -- check a patron login against the ILS from the command line.

Runs the same evaluation as POST /api/v1/user/Auth and prints the response
body the endpoint would send, followed by the HTTP status on stderr.

Usage:
  python main.py jdoe
  python main.py jdoe --mode apa
  python main.py '$svc1' --password-stdin < secret.txt
  python main.py jdoe --pretty

Environment variables:
  ILS_BASE_URL, ILS_API_KEY   Alma REST endpoint and API key (see core/config.py)
  DISPLAY_DATE_FORMAT         strptime format of patron expiry dates
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.identity import AuthManager
from cache.store import ObjectCache
from core.config import get_settings
from core.errors import PatronAuthError
from core.evaluator import PatronAuthEvaluator
from core.models import STATUS_ERROR, AuthMode, AuthRequest
from core.renderer import output, render
from ils.alma import AlmaClient


def _read_password(from_stdin: bool) -> Optional[str]:
    """Read the password from stdin (first line) or prompt without echo."""
    if from_stdin:
        line = sys.stdin.readline()
        return line.rstrip("\r\n") or None
    try:
        return getpass.getpass("Password: ") or None
    except (EOFError, KeyboardInterrupt):
        print()
        return None


def evaluate_login(username: str, password: Optional[str], mode: AuthMode, pretty: bool = False) -> tuple[int, str]:
    """Evaluate one login and return (http_status, body) as the endpoint would."""
    settings = get_settings()
    cache = ObjectCache(settings.cache_db_path, ttl=settings.cache_ttl)
    ils = AlmaClient(
        settings.ils_base_url,
        settings.ils_api_key,
        cache=cache,
        timeout=settings.ils_timeout,
        display_date_format=settings.display_date_format,
    )
    evaluator = PatronAuthEvaluator(
        AuthManager(ils, cache=cache, enabled=settings.login_enabled),
        ils,
        cache,
        display_date_format=settings.display_date_format,
        language=settings.language,
    )
    try:
        outcome = evaluator.evaluate(AuthRequest(username=username, password=password, mode=mode))
        rendered = render(outcome.status, mode, username=username)
        response = output(
            rendered.content,
            outcome.envelope_status,
            outcome.http_status,
            output_mode=rendered.output_mode,
            pretty=pretty,
        )
    except PatronAuthError as e:
        response = output({}, STATUS_ERROR, e.http_status, e.message, pretty=pretty)
    finally:
        ils.close()
        cache.close()
    return response.status_code, response.body.decode("utf-8")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="patronauth",
        description="Check a patron login against the ILS and print the auth API response.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py jdoe
  python main.py jdoe --mode apa
  echo secret | python main.py jdoe --password-stdin
        """,
    )
    parser.add_argument("username", help="Patron username (primary ID in the ILS)")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in AuthMode],
        default=AuthMode.default.value,
        help="Response variant: default (JSON) or apa (XML status codes)",
    )
    parser.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        help="Indent JSON output",
    )
    args = parser.parse_args()

    password = _read_password(args.password_stdin)
    status_code, body = evaluate_login(args.username, password, AuthMode(args.mode), pretty=args.pretty)
    print(body)
    print(f"HTTP {status_code}", file=sys.stderr)
    sys.exit(0 if status_code == 200 else 1)


if __name__ == "__main__":
    main()
