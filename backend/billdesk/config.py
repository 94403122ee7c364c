# backend/billdesk/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/billdesk.sqlite3 unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///billdesk.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Name of the payment gateway strategy (see services/payment_gateway.py)
    PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "simulated")
    CURRENCY = os.environ.get("CURRENCY", "usd")

    DEFAULT_VAT_PERCENT = _env_int("DEFAULT_VAT_PERCENT", 5)
    DEFAULT_DISCOUNT_LIMIT = _env_int("DEFAULT_DISCOUNT_LIMIT", 10)
    QUOTE_VALIDITY_DAYS = _env_int("QUOTE_VALIDITY_DAYS", 30)
    INVOICE_DUE_DAYS = _env_int("INVOICE_DUE_DAYS", 30)

    CORS_ORIGINS = {
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    }


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "WARNING"
