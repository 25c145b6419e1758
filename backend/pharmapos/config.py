# backend/pharmapos/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.environ.get(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Duplicate-submission guard for POST /api/sales
    IDEMPOTENCY_TTL_SECONDS = _env_int("IDEMPOTENCY_TTL_SECONDS", 60)
    IDEMPOTENCY_SWEEP_INTERVAL_SECONDS = _env_int("IDEMPOTENCY_SWEEP_INTERVAL_SECONDS", 30)
    IDEMPOTENCY_SWEEPER_ENABLED = _env_bool("IDEMPOTENCY_SWEEPER_ENABLED", True)

    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)
    SESSION_ABSOLUTE_TIMEOUT_HOURS = _env_int("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24)
    SESSION_IDLE_TIMEOUT_HOURS = _env_int("SESSION_IDLE_TIMEOUT_HOURS", 2)

    TRANSACTION_CODE_PREFIX = os.environ.get("TRANSACTION_CODE_PREFIX", "TXN")
