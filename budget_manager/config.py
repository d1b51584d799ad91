from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DATABASE_URL = "sqlite:///./budget_manager.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"
DEFAULT_SESSION_COOKIE_NAME = "budget_session"
DEFAULT_SESSION_TTL_HOURS = 168
DEFAULT_RECOVERY_TTL_MINUTES = 60
DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OPENROUTER_MODEL = "openai/gpt-4o-mini"
DEFAULT_OPENROUTER_TIMEOUT_SECONDS = 30
DEFAULT_OPENROUTER_MAX_RETRIES = 3

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    session_cookie_name: str = DEFAULT_SESSION_COOKIE_NAME
    session_ttl_hours: int = DEFAULT_SESSION_TTL_HOURS
    recovery_ttl_minutes: int = DEFAULT_RECOVERY_TTL_MINUTES
    cookie_secure: bool = False
    log_level: str = "INFO"
    log_recovery_tokens: bool = False
    # Category suggestions are disabled without an API key.
    openrouter_api_key: Optional[str] = None
    openrouter_base_url: str = DEFAULT_OPENROUTER_BASE_URL
    openrouter_model: str = DEFAULT_OPENROUTER_MODEL
    openrouter_timeout_seconds: int = DEFAULT_OPENROUTER_TIMEOUT_SECONDS
    openrouter_max_retries: int = DEFAULT_OPENROUTER_MAX_RETRIES

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
            session_cookie_name=os.getenv("SESSION_COOKIE_NAME", DEFAULT_SESSION_COOKIE_NAME),
            session_ttl_hours=_get_positive_int("SESSION_TTL_HOURS", DEFAULT_SESSION_TTL_HOURS),
            recovery_ttl_minutes=_get_positive_int(
                "RECOVERY_TTL_MINUTES", DEFAULT_RECOVERY_TTL_MINUTES
            ),
            cookie_secure=_get_bool("COOKIE_SECURE"),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_recovery_tokens=_get_bool("LOG_RECOVERY_TOKENS"),
            openrouter_api_key=os.getenv("OPENROUTER_API_KEY", "").strip() or None,
            openrouter_base_url=os.getenv("OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_BASE_URL),
            openrouter_model=os.getenv("OPENROUTER_MODEL", DEFAULT_OPENROUTER_MODEL),
            openrouter_timeout_seconds=_get_positive_int(
                "OPENROUTER_TIMEOUT_SECONDS", DEFAULT_OPENROUTER_TIMEOUT_SECONDS
            ),
            openrouter_max_retries=_get_positive_int(
                "OPENROUTER_MAX_RETRIES", DEFAULT_OPENROUTER_MAX_RETRIES
            ),
        )


def _get_positive_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _get_bool(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUE_VALUES
