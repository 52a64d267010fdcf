#!/usr/bin/env python3
"""Check CargoDesk settings before a staging or production deploy.

Prints a JSON summary and exits 1 when any check fails.

Examples:
  python backend/scripts/validate_runtime_config.py
  python backend/scripts/validate_runtime_config.py --require-paypal --pretty
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import DEFAULT_JWT_SECRET, get_settings


def _validate_settings(*, require_paypal: bool, require_email: bool) -> tuple[list[str], dict[str, Any]]:
    settings = get_settings()
    failures: list[str] = []

    if not settings.is_local:
        if settings.jwt_secret == DEFAULT_JWT_SECRET:
            failures.append("JWT_SECRET must not use the default value outside local/dev/test")
        if settings.debug:
            failures.append("DEBUG=true is not allowed outside local/dev/test")
        if settings.paypal_environment not in ("sandbox", "production"):
            failures.append("PAYPAL_ENVIRONMENT must be 'sandbox' or 'production'")
        if settings.rate_limit_backend != "redis":
            failures.append("RATE_LIMIT_BACKEND should be 'redis' when running more than one instance")

    if require_paypal:
        if not settings.paypal_client_id.strip():
            failures.append("PAYPAL_CLIENT_ID is required when --require-paypal is set")
        if not settings.paypal_client_secret.strip():
            failures.append("PAYPAL_CLIENT_SECRET is required when --require-paypal is set")
    if require_email and not settings.sendgrid_api_key.strip():
        failures.append("SENDGRID_API_KEY is required when --require-email is set")

    summary = {
        "status": "success" if not failures else "failed",
        "app_env": settings.app_env,
        "local_env": settings.is_local,
        "require_paypal": bool(require_paypal),
        "require_email": bool(require_email),
        "failures": failures,
    }
    return failures, summary


def main() -> int:
    parser = argparse.ArgumentParser(description="Validate deployment runtime config")
    parser.add_argument("--require-paypal", action="store_true", help="Require PayPal client credentials")
    parser.add_argument("--require-email", action="store_true", help="Require a SendGrid API key")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args()

    try:
        failures, summary = _validate_settings(
            require_paypal=bool(args.require_paypal),
            require_email=bool(args.require_email),
        )
    except Exception as exc:  # noqa: BLE001
        # get_settings() raises on the startup guardrails; report instead of crashing.
        summary = {"status": "failed", "error": str(exc)}
        failures = [str(exc)]

    if args.pretty:
        print(json.dumps(summary, indent=2, sort_keys=True))
    else:
        print(json.dumps(summary))

    return 0 if not failures else 1


if __name__ == "__main__":
    raise SystemExit(main())
