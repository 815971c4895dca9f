"""Centralized configuration for the Bank Appointment Assistant.

Each setting comes from the process environment (``.env`` is loaded first
for local runs).  On AWS, secrets missing from the environment are read
from SSM Parameter Store under ``SSM_PREFIX``.

The Salesforce credentials are optional at import time: the CRM client
checks them when a connection is first needed and raises a
``ConfigurationError`` then.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SSM_PREFIX = "/bank-appointments"
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

@lru_cache(maxsize=1)
def _ssm_client():
    import boto3  # noqa: PLC0415 (only needed on AWS)

    return boto3.client("ssm")


def _from_ssm(name: str) -> str | None:
    """SecureString ``{SSM_PREFIX}/{name}``, or ``None`` when unreadable."""
    try:
        resp = _ssm_client().get_parameter(Name=f"{SSM_PREFIX}/{name}", WithDecryption=True)
    except Exception as exc:
        logger.warning("SSM parameter %s/%s unavailable: %s", SSM_PREFIX, name, exc)
        return None
    return resp["Parameter"]["Value"]


def _resolve(name: str) -> str | None:
    value = os.getenv(name)
    # Placeholders copied from an example .env count as unset
    if value and not value.startswith("your_"):
        return value
    return _from_ssm(name) if _ON_AWS else None


def _require_env(name: str) -> str:
    value = _resolve(name)
    if value is None:
        raise OSError(
            f"Missing required configuration: {name}. "
            f"Set it in the environment or in SSM as {SSM_PREFIX}/{name}."
        )
    return value


# ── Environment ─────────────────────────────────────────────────────
APP_ENV: str = os.getenv("APP_ENV", "development")
IS_PRODUCTION: bool = APP_ENV == "production"

# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
# Slot extraction is the only call that benefits from a larger model
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
# Greeting, confirmation, suggestions and recommendations
FAST_MODEL_NAME: str = os.getenv("FAST_MODEL_NAME", "claude-haiku-4-5")

# ── Salesforce (CRM) ────────────────────────────────────────────────
SALESFORCE_ACCESS_TOKEN: str | None = _resolve("SALESFORCE_ACCESS_TOKEN")
SALESFORCE_INSTANCE_URL: str | None = _resolve("SALESFORCE_INSTANCE_URL")
SALESFORCE_API_VERSION: str = os.getenv("SALESFORCE_API_VERSION", "v59.0")

# Single-tenant deployment: every booking is filed against this contact
CRM_CONTACT_ID: str = os.getenv("CRM_CONTACT_ID", "003dM000005H5A7QAK")

# ── Authentication / session ────────────────────────────────────────
STATIC_USERNAME: str = os.getenv("STATIC_USERNAME", "Jack Rogers")
STATIC_PASSWORD: str = _require_env("STATIC_PASSWORD")
SESSION_SECRET: str = _require_env("SESSION_SECRET")
SESSION_MAX_AGE_SECONDS: int = int(os.getenv("SESSION_MAX_AGE_SECONDS", "3600"))
SESSION_COOKIE_NAME: str = os.getenv("SESSION_COOKIE_NAME", "appointment_session")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("PORT", "3000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")
