"""
CargoDesk Security Utilities

JWT handling, password hashing, and warehouse API-key hashing.
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext

from core.config import get_settings

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

API_KEY_PREFIXES = ("wh_live_", "wh_test_")
API_KEY_PREFIX_LENGTH = 12


def hash_password(password: str) -> str:
    """Hash a password for storage."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=settings.access_token_expire_hours))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a session token. Returns None when invalid or expired."""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


# ─── Warehouse API keys ────────────────────────────────────────────────────


def hash_api_key(raw_key: str) -> str:
    """Keys are stored as sha256 digests, never in plain text."""
    return hashlib.sha256(raw_key.encode()).hexdigest()


def is_api_key_format(raw_key: str | None) -> bool:
    return bool(raw_key) and raw_key.startswith(API_KEY_PREFIXES)


def api_key_prefix(raw_key: str) -> str:
    """Public identifier used for rate limiting and display."""
    return raw_key[:API_KEY_PREFIX_LENGTH]


def generate_api_key(live: bool = True) -> str:
    prefix = "wh_live_" if live else "wh_test_"
    return prefix + secrets.token_urlsafe(32)
