"""
config.py
=========
Runtime settings, resolved once from environment variables.

Env Vars
--------
- DATABASE_URL          : SQLAlchemy URL, default sqlite:///./churnguard.db
- ECHO_SQL              : "true" to enable SQL echo
- SEED_ON_START         : "true" to seed demo data at startup
- RESEND_API_KEY        : API key for outbound email
- EMAIL_FROM            : sender address used for alert emails
- POSTHOG_HOST          : PostHog API host
- HTTP_TIMEOUT_SECONDS  : timeout for PostHog requests
- BATCH_MAX_WORKERS     : triggers processed concurrently (1..5)
- SEND_MAX_WORKERS      : email sends in flight per trigger (1..5)
- SEND_TIMEOUT_SECONDS  : bound on a single email send
- LEASE_SECONDS         : how long a batch worker may hold a trigger
- LOG_LEVEL             : DEBUG | INFO | WARNING | ERROR
- LOG_FORMAT            : console | json
"""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value and value.strip():
        return value.strip()
    return default


def _env_bool(name: str, default: bool = False) -> bool:
    return _env_str(name, "true" if default else "false").lower() == "true"


def _env_float(name: str, default: float) -> float:
    try:
        return float(_env_str(name, str(default)))
    except ValueError:
        return default


def _env_workers(name: str, default: int) -> int:
    """Worker counts are clamped to 1..5 to stay under third-party rate limits."""
    try:
        value = int(_env_str(name, str(default)))
    except ValueError:
        value = default
    return max(1, min(5, value))


@dataclass(frozen=True)
class Settings:
    database_url: str
    echo_sql: bool
    seed_on_start: bool
    resend_api_key: str
    email_from: str
    posthog_host: str
    http_timeout_seconds: float
    batch_max_workers: int
    send_max_workers: int
    send_timeout_seconds: float
    lease_seconds: float
    log_level: str
    log_format: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=_env_str("DATABASE_URL", "sqlite:///./churnguard.db"),
            echo_sql=_env_bool("ECHO_SQL"),
            seed_on_start=_env_bool("SEED_ON_START"),
            resend_api_key=_env_str("RESEND_API_KEY", ""),
            email_from=_env_str("EMAIL_FROM", "ChurnGuard <noreply@churnguard.app>"),
            posthog_host=_env_str("POSTHOG_HOST", "https://app.posthog.com"),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
            batch_max_workers=_env_workers("BATCH_MAX_WORKERS", 2),
            send_max_workers=_env_workers("SEND_MAX_WORKERS", 3),
            send_timeout_seconds=_env_float("SEND_TIMEOUT_SECONDS", 15.0),
            lease_seconds=_env_float("LEASE_SECONDS", 600.0),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            log_format=_env_str("LOG_FORMAT", "console").lower(),
        )


settings = Settings.from_env()
