#!/usr/bin/env python3
"""
Dev helper: send a test form submission to the local relay backend.

Builds a Basin-style submission and POST-s it to /api/webhooks/basin as JSON,
as a JSON-encoded string, or as URL-encoded form data.

Usage
-----
# Basic: opted-in JSON submission to localhost:8000
python scripts/send_test_submission.py

# URL-encoded, like Basin's default delivery
python scripts/send_test_submission.py --format form

# Phone number to exercise SMS consent / region fallback
python scripts/send_test_submission.py --phone +15551234567

# Unchecked marketing box (should come back "skipped")
python scripts/send_test_submission.py --no-marketing

Environment / .env
------------------
WEBHOOK_SECRET   Shared webhook secret, sent as "Authorization: Bearer ...".
                 Only needed when the backend has one configured.
"""

import argparse
import json
import os
import sys
import textwrap
from pathlib import Path
from urllib.parse import urlencode

import httpx
from dotenv import load_dotenv


def _build_submission(args: argparse.Namespace) -> dict:
    submission = {
        "email": args.email,
        "name": args.name,
        "phone": args.phone,
        "state": args.state,
        "country": args.country,
        "goal": args.goal,
        "comments": "Sent by send_test_submission.py",
    }
    if not args.no_marketing:
        submission["marketing"] = "on"
    return {k: v for k, v in submission.items() if v}


def _encode(submission: dict, body_format: str) -> tuple[bytes, str]:
    """Return (body, content_type) for the chosen delivery format."""
    if body_format == "form":
        return urlencode(submission).encode(), "application/x-www-form-urlencoded"
    if body_format == "json-string":
        return json.dumps(json.dumps(submission)).encode(), "application/json"
    return json.dumps(submission).encode(), "application/json"


def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status < 300 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}  (request id: {response.headers.get('X-Request-ID')})")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_submission.py",
        description="Send a test form submission to the relay backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_submission.py
              python scripts/send_test_submission.py --format form
              python scripts/send_test_submission.py --phone +15551234567 --state CA
              python scripts/send_test_submission.py --url http://localhost:8000
        """),
    )
    parser.add_argument("--url", default="http://localhost:8000",
                        help="Backend base URL (default: http://localhost:8000)")
    parser.add_argument("--format", dest="body_format", default="json",
                        choices=["json", "json-string", "form"],
                        help="Body encoding (default: json)")
    parser.add_argument("--email", default="test@example.com")
    parser.add_argument("--name", default="Test Person")
    parser.add_argument("--phone", default="")
    parser.add_argument("--state", default="CA")
    parser.add_argument("--country", default="")
    parser.add_argument("--goal", default="1000")
    parser.add_argument("--no-marketing", action="store_true",
                        help="Leave the marketing opt-in unchecked")
    parser.add_argument("--secret", default=None,
                        help="Override WEBHOOK_SECRET from the environment")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the request body without sending it")

    args = parser.parse_args()

    submission = _build_submission(args)
    body, content_type = _encode(submission, args.body_format)
    endpoint = f"{args.url.rstrip('/')}/api/webhooks/basin"

    print(f"Endpoint : {endpoint}")
    print(f"Format   : {args.body_format} ({content_type})")

    if args.dry_run:
        print("\n[DRY RUN] Body:")
        print(body.decode())
        return 0

    headers = {"Content-Type": content_type}
    secret = args.secret or os.getenv("WEBHOOK_SECRET")
    if secret:
        headers["Authorization"] = f"Bearer {secret}"

    try:
        response = httpx.post(endpoint, content=body, headers=headers, timeout=30)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn formrelay.main:app --reload",
            file=sys.stderr,
        )
        return 1

    _print_response(response)
    return 0 if response.status_code < 300 else 1


if __name__ == "__main__":
    sys.exit(main())
