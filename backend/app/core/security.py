"""Security helpers for password hashing, access tokens and password reset tokens."""

from __future__ import annotations

import hashlib
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext

from app.config import get_settings
from app.services.cache import get_cache

settings = get_settings()

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


@dataclass(slots=True)
class ResetTokenData:
    """Subject bound to a consumed password reset token."""

    token_id: str
    subject: str
    expires_at: datetime


class ResetTokenError(Exception):
    """Raised when a password reset token cannot be validated."""


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: Dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT access token with an expiration time."""

    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta if expires_delta is not None else timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT access token."""

    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:  # pragma: no cover - simple error mapping
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired") from exc
    except jwt.InvalidTokenError as exc:  # pragma: no cover - simple error mapping
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials") from exc
    return payload


def _reset_cache_key(token_id: str) -> str:
    return f"auth:password_reset:{token_id}"


def _hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def create_password_reset_token(subject: str) -> tuple[str, int]:
    """Generate a one-time reset token; only a hash of its secret is cached."""

    ttl = max(int(settings.password_reset_token_ttl_seconds), 1)
    token_id = secrets.token_urlsafe(16)
    token_secret = secrets.token_urlsafe(32)
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    payload = {
        "sub": subject,
        "hash": _hash_secret(token_secret),
        "exp": int(expires_at.timestamp()),
    }
    get_cache().set(_reset_cache_key(token_id), json.dumps(payload), ttl)
    return f"{token_id}.{token_secret}", ttl


def consume_password_reset_token(token: str) -> ResetTokenData:
    """Validate a reset token and revoke it; a token works at most once."""

    parts = token.split(".", 1)
    if len(parts) != 2:
        raise ResetTokenError("Malformed reset token")
    token_id, token_secret = parts
    cached = get_cache().pop(_reset_cache_key(token_id))
    if cached is None:
        raise ResetTokenError("Reset token not found or expired")

    try:
        payload = json.loads(cached)
    except json.JSONDecodeError as exc:
        raise ResetTokenError("Corrupted reset token payload") from exc

    expected_hash = payload.get("hash")
    if not expected_hash or not secrets.compare_digest(expected_hash, _hash_secret(token_secret)):
        raise ResetTokenError("Reset token signature mismatch")

    exp_timestamp = payload.get("exp")
    if not isinstance(exp_timestamp, (int, float)):
        raise ResetTokenError("Reset token is missing expiration")
    expires_at = datetime.fromtimestamp(exp_timestamp, tz=timezone.utc)
    if expires_at <= datetime.now(timezone.utc):
        raise ResetTokenError("Reset token expired")

    return ResetTokenData(token_id=token_id, subject=str(payload.get("sub")), expires_at=expires_at)
