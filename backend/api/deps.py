"""
CargoDesk API Dependencies

Dependency injection for DB sessions, session auth, role checks, warehouse
API keys, rate limiting and the PayPal client.
"""

import uuid
from collections.abc import AsyncGenerator
from functools import lru_cache

import redis.asyncio as aioredis
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.errors import Forbidden, RateLimitExceeded, Unauthorized
from core.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from core.security import api_key_prefix, decode_access_token, hash_api_key, is_api_key_format
from db.models import ApiKey, User, utcnow
from db.session import get_sessionmaker
from payments.paypal import PayPalClient
from shipping.lifecycle import Actor

security = HTTPBearer(auto_error=False)

# Dev user returned by the debug auth bypass
DEV_USER_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with get_sessionmaker()() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if credentials is None and get_settings().debug:
        return {"sub": DEV_USER_ID, "email": "dev@cargodesk.com", "role": "admin", "user_code": "DEV"}

    if credentials is None:
        raise Unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None or not payload.get("sub") or not payload.get("role"):
        raise Unauthorized("Invalid or expired token")
    return payload


def require_roles(*roles: str):
    """Route guard: the session's role must be one of ``roles``."""

    async def _check(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise Forbidden(f"{' or '.join(roles).capitalize()} access required")
        return user

    return _check


def actor_from(user: dict) -> Actor:
    return Actor.from_user(user)


async def get_current_customer(
    user: dict = Depends(require_roles("customer")),
    db: AsyncSession = Depends(get_db),
) -> User:
    """The signed-in customer's account row."""
    try:
        user_id = uuid.UUID(str(user["sub"]))
    except ValueError as exc:
        raise Unauthorized("Invalid or expired token") from exc
    customer = await db.get(User, user_id)
    if customer is None or not customer.active:
        raise Unauthorized("Account not found or inactive")
    return customer


# ─── Rate limiting ─────────────────────────────────────────────────────────


@lru_cache
def get_rate_limiter() -> RateLimiter:
    """One limiter per process; the Redis backend shares its counters across instances."""
    settings = get_settings()
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(
            aioredis.from_url(settings.redis_url, decode_responses=True),
            max_requests=settings.rate_limit_max_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )


# ─── Warehouse API keys ────────────────────────────────────────────────────


def extract_api_key(request: Request) -> str | None:
    return (
        request.headers.get("x-warehouse-key")
        or request.headers.get("x-api-key")
        or request.query_params.get("id")
    )


def has_permission(key: ApiKey, permission: str) -> bool:
    granted = key.permissions or []
    return permission in granted or "*" in granted


def require_api_key(permission: str):
    """Authenticate an API key, check ``permission``, then count the request against its window."""

    async def _check(
        request: Request,
        response: Response,
        db: AsyncSession = Depends(get_db),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> ApiKey:
        raw = extract_api_key(request)
        if not raw:
            raise Unauthorized("API key required in headers (x-warehouse-key or x-api-key) or query parameter (id)")
        if not is_api_key_format(raw):
            raise Unauthorized("Invalid API key format")

        result = await db.execute(select(ApiKey).where(ApiKey.key_hash == hash_api_key(raw)))
        key = result.scalar_one_or_none()
        if key is None or not key.active:
            raise Unauthorized("Invalid API key")
        if key.expires_at is not None and key.expires_at <= utcnow():
            raise Unauthorized("API key expired")
        if not has_permission(key, permission):
            raise Forbidden(f"Insufficient permissions (requires {permission})")

        decision = await limiter.hit(key.key_prefix or api_key_prefix(raw))
        if not decision.allowed:
            raise RateLimitExceeded(
                details={"retry_after": decision.retry_after, "remaining": decision.remaining},
                headers=decision.headers(),
            )
        response.headers.update(decision.headers())

        key.last_used_at = utcnow()
        await db.commit()
        return key

    return _check


def api_key_actor(key: ApiKey) -> Actor:
    return Actor(role="warehouse", name=f"api:{key.key_prefix}")


# ─── Payment gateway ───────────────────────────────────────────────────────


@lru_cache
def get_paypal_client() -> PayPalClient:
    """Shared client so the OAuth token is reused between requests."""
    return PayPalClient.from_settings()
