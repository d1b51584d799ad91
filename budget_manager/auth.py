from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta

import bcrypt

TOKEN_BYTES = 32


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def new_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def token_digest(token: str) -> str:
    """Only digests of session and recovery tokens are persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def expiry_from(now: datetime, *, hours: int = 0, minutes: int = 0) -> datetime:
    return now + timedelta(hours=hours, minutes=minutes)


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
