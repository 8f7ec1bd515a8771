# breach_registry/core/config.py
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv, find_dotenv

# ---------------------------
# Env loading (root .env first, then package .env as fallback)
# ---------------------------
load_dotenv(find_dotenv(usecwd=True))
load_dotenv(Path(__file__).resolve().parents[1] / ".env", override=False)

DEFAULT_TOKEN_SECRET = "change-me-verification-secret"


def _flag(name: str, default: str = "1") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./breach_registry.db")

# Startup behaviour
ENABLE_CREATE_ALL = _flag("ENABLE_CREATE_ALL", "1")
ENABLE_SCHEDULER = _flag("ENABLE_SCHEDULER", "0")

# Scheduler (daily deadline scan)
APP_TIMEZONE = os.getenv("APP_TIMEZONE", "UTC")
APP_SCHEDULER_HOUR = int(os.getenv("APP_SCHEDULER_HOUR", "6"))
APP_SCHEDULER_MINUTE = int(os.getenv("APP_SCHEDULER_MINUTE", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def get_token_secret() -> str:
    """
    Server-side key for verification tokens.
    Read on every call so rotating the env (or monkeypatching it in tests)
    takes effect without a restart of the module.
    """
    return os.getenv("VERIFICATION_TOKEN_SECRET") or DEFAULT_TOKEN_SECRET
