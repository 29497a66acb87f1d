# backend/logistics/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Postgres in production (row locks are honored there); SQLite for local dev
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///delivery_erp.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # When True, a failed cashbox effect fails the whole order request.
    # Default is best-effort: the order commits and the response carries warnings.
    CASHBOX_STRICT_LEDGER = _env_flag("CASHBOX_STRICT_LEDGER", False)

    # Fallback rate when the exchange_rates table is empty
    DEFAULT_LBP_PER_USD = int(os.environ.get("DEFAULT_LBP_PER_USD", "89000"))

    ORDER_REF_PREFIX = os.environ.get("ORDER_REF_PREFIX", "ORD")

    CORS_ALLOWED_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }
