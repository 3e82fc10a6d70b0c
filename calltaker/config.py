"""Centralized configuration for the call-taker backend.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/calltaker/<VARIABLE_NAME>``.

Secrets are *not* required at import time: a missing dispatch password
surfaces as an ``AuthError`` from the credential cache, and a missing LLM key
as a ``ConfigurationError`` per request, so the server can still boot and
answer health checks.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/calltaker/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _get_secret(name: str) -> str:
    """Return a secret from env-var or SSM, or an empty string."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    logger.warning("Configuration value %s is not set", name)
    return ""


def _positive_int(name: str, default: int) -> int:
    """Read a positive integer override; anything else means *default*."""
    raw = os.getenv(name, "")
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


# ── Dispatch API ─────────────────────────────────────────────────────
DEFAULT_DISPATCH_API_BASE_URL = "https://apicall.koachapp.com"
DISPATCH_API_BASE_URL: str = os.getenv("DISPATCH_API_BASE_URL", DEFAULT_DISPATCH_API_BASE_URL)
DISPATCH_AGENT_SHARED_PASSWORD: str = _get_secret("DISPATCH_AGENT_SHARED_PASSWORD")
DISPATCH_REQUEST_TIMEOUT_SECONDS: float = float(
    os.getenv("DISPATCH_REQUEST_TIMEOUT_SECONDS", "15"),
)

# Soft TTLs: refresh cadence we control, not the upstream's real expiry
DISPATCH_TOKEN_TTL_MINUTES: int = _positive_int("DISPATCH_TOKEN_TTL_MINUTES", 20)
ACCOUNTS_CACHE_TTL_MINUTES: int = _positive_int("ACCOUNTS_CACHE_TTL_MINUTES", 30)

# Cap on the raw reservation payload handed to the model
RESERVATION_PAYLOAD_MAX_CHARS: int = _positive_int("RESERVATION_PAYLOAD_MAX_CHARS", 2500)

# ── LLM ─────────────────────────────────────────────────────────────
OPENAI_API_KEY: str = _get_secret("OPENAI_API_KEY")
OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_RESPONSES_URL: str = os.getenv(
    "OPENAI_RESPONSES_URL", "https://api.openai.com/v1/responses",
)

# ── Directory (agents / companies / prompts JSON files) ─────────────
CALLTAKER_CONFIG_DIR: str = os.getenv("CALLTAKER_CONFIG_DIR", "config")

# ── Admin ───────────────────────────────────────────────────────────
# Shared token for the /admin routes; unset disables them
CALLTAKER_ADMIN_TOKEN: str = _get_secret("CALLTAKER_ADMIN_TOKEN")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8000"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
