#!/usr/bin/env python3
"""Issue a warehouse integration API key.

The raw key is printed once; only its sha256 hash is stored.

Examples:
  python backend/scripts/create_api_key.py "Scanner Bay 1" packages:read packages:write
  python backend/scripts/create_api_key.py "Staging sync" "*" --test --expires-days 30
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import timedelta

# Add backend/ to path when run as a script.
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.ext.asyncio import AsyncSession

from core.security import api_key_prefix, generate_api_key, hash_api_key
from db import audit
from db.models import ApiKey, utcnow

KNOWN_PERMISSIONS = (
    "packages:read",
    "packages:write",
    "customers:read",
    "inventory:read",
    "rates:read",
    "*",
)


async def issue_api_key(
    db: AsyncSession,
    name: str,
    permissions: list[str],
    live: bool = True,
    expires_days: int | None = None,
) -> tuple[ApiKey, str]:
    """Create the key row and return it with the raw key (shown once)."""
    unknown = sorted(set(permissions) - set(KNOWN_PERMISSIONS))
    if unknown:
        raise ValueError(f"Unknown permissions: {', '.join(unknown)}")
    if not permissions:
        raise ValueError("At least one permission is required")

    raw = generate_api_key(live=live)
    key = ApiKey(
        name=name,
        key_hash=hash_api_key(raw),
        key_prefix=api_key_prefix(raw),
        permissions=list(permissions),
        active=True,
        expires_at=utcnow() + timedelta(days=expires_days) if expires_days else None,
    )
    db.add(key)
    await db.flush()
    audit.record(db, "cli", "api_key.created", "api_key", key.key_id, {"name": name, "permissions": permissions})
    await db.commit()
    return key, raw


async def _run(args: argparse.Namespace) -> dict:
    from db.session import dispose_engine, get_sessionmaker

    try:
        async with get_sessionmaker()() as db:
            key, raw = await issue_api_key(
                db,
                args.name,
                args.permissions,
                live=not args.test,
                expires_days=args.expires_days,
            )
    finally:
        await dispose_engine()
    return {
        "status": "success",
        "name": key.name,
        "key_prefix": key.key_prefix,
        "permissions": key.permissions,
        "expires_at": key.expires_at.isoformat() if key.expires_at else None,
        "api_key": raw,
    }


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue a warehouse integration API key")
    parser.add_argument("name", help="Human-readable label for the key")
    parser.add_argument(
        "permissions",
        nargs="+",
        help=f"Granted permissions ({', '.join(KNOWN_PERMISSIONS)})",
    )
    parser.add_argument("--test", action="store_true", help="Issue a wh_test_ key instead of wh_live_")
    parser.add_argument("--expires-days", type=int, default=None, help="Expire the key after N days")
    args = parser.parse_args()

    try:
        summary = asyncio.run(_run(args))
    except ValueError as exc:
        print(json.dumps({"status": "failed", "error": str(exc)}))
        return 1

    print(json.dumps(summary, indent=2))
    print("Store this key now; it cannot be shown again.", file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
