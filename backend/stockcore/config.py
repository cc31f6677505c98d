# backend/stockcore/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockcore.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockcore.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("STOCKCORE_LOG_LEVEL", "INFO")

    # Retry policy for lock/deadlock failures on stock mutations
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCKCORE_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF = float(os.environ.get("STOCKCORE_RETRY_BACKOFF", "0.05"))

    # When the payment lookup itself fails during a void:
    # False -> refuse the void (PaymentCheckUnavailableError)
    # True  -> log and proceed with the void
    VOID_PAYMENT_CHECK_FAIL_OPEN = _env_bool("STOCKCORE_VOID_FAIL_OPEN", False)

    MOVEMENT_LIST_LIMIT = 500
    ADJUSTMENT_REASON_MAX_LENGTH = 100
