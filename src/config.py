"""Centralized configuration for the Aparatus booking assistant.

Every setting is a module-level constant resolved once, at import.  Secrets
are looked up in this order:

  1. Environment variable / ``.env`` file
  2. AWS SSM Parameter Store ``/aparatus/<VARIABLE_NAME>`` (SecureString),
     only when ``AWS_EXECUTION_ENV`` says we are running on AWS

Numeric settings that fail to parse stop the process at start-up instead of
surfacing as odd behaviour mid-conversation.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import TypeVar

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

T = TypeVar("T")

SSM_PREFIX = "/aparatus"
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _from_ssm(name: str) -> str | None:
    """Read ``/aparatus/<name>`` from SSM, or ``None`` on any failure."""
    try:
        import boto3  # noqa: PLC0415

        response = boto3.client("ssm").get_parameter(
            Name=f"{SSM_PREFIX}/{name}", WithDecryption=True,
        )
    except Exception:
        logger.debug("SSM parameter %s/%s unavailable", SSM_PREFIX, name)
        return None
    return response["Parameter"]["Value"]


def _secret(name: str) -> str:
    """A required secret; placeholder values copied from ``.env.example``
    (``your_...``) count as missing."""
    value = os.getenv(name)
    if not value or value.startswith("your_"):
        value = _from_ssm(name) if _ON_AWS else None
    if not value:
        raise OSError(
            f"Missing required configuration: {name}. "
            f"Set it in .env or in SSM Parameter Store at {SSM_PREFIX}/{name}."
        )
    return value


def _setting(name: str, default: T, cast: Callable[[str], T]) -> T:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValueError(f"Invalid value for {name}: {raw!r}") from None


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _secret("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
MODEL_TEMPERATURE: float = _setting("MODEL_TEMPERATURE", 0.3, float)
MODEL_MAX_TOKENS: int = _setting("MODEL_MAX_TOKENS", 2048, int)

# ── Orchestration loop ──────────────────────────────────────────────
# Model calls allowed per chat request.
MAX_STEPS: int = _setting("MAX_STEPS", 10, int)
TOOL_TIMEOUT_SECONDS: float = _setting("TOOL_TIMEOUT_SECONDS", 20.0, float)
# Worker threads shared by all tool executors; timed-out calls keep theirs.
TOOL_MAX_WORKERS: int = _setting("TOOL_MAX_WORKERS", 16, int)
HISTORY_SUMMARY_LIMIT: int = _setting("HISTORY_SUMMARY_LIMIT", 5, int)
BOOKING_HISTORY_LIMIT: int = _setting("BOOKING_HISTORY_LIMIT", 10, int)
TIMEZONE: str = os.getenv("TIMEZONE", "America/Sao_Paulo")

# ── Marketplace backend ─────────────────────────────────────────────
MARKETPLACE_API_TOKEN: str = _secret("MARKETPLACE_API_TOKEN")
MARKETPLACE_BASE_URL: str = os.getenv("MARKETPLACE_BASE_URL", "http://localhost:3000")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = _setting("SERVER_PORT", 8000, int)
CORS_ORIGINS: list[str] = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
