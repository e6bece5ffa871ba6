# backend/teller/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/teller.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///teller.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Denomination ladder used by the drawer and the change calculator
    CURRENCY_PROFILE = os.environ.get("CURRENCY_PROFILE", "MXN")

    # Rollback / retry policy
    ROLLBACK_WINDOW_HOURS = int(os.environ.get("ROLLBACK_WINDOW_HOURS", "24"))
    RETRY_MAX_ATTEMPTS = int(os.environ.get("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE_SECONDS = float(os.environ.get("RETRY_BACKOFF_BASE_SECONDS", "2"))

    # Card minimum payment policy (decimal strings, never floats)
    MIN_PAYMENT_RATE = os.environ.get("MIN_PAYMENT_RATE", "0.05")
    MIN_PAYMENT_FLOOR = os.environ.get("MIN_PAYMENT_FLOOR", "200.00")

    # Provider credit caps, keyed by provider code
    PROVIDER_CREDIT_LIMITS = {
        "DIESTEL": {
            "total": os.environ.get("DIESTEL_CREDIT_LIMIT", "100000.00"),
            "daily_min": os.environ.get("DIESTEL_DAILY_MIN", "6000.00"),
            "daily_max": os.environ.get("DIESTEL_DAILY_MAX", "8000.00"),
        },
    }

    # Seconds an external provider confirmation may take before it is treated as failed
    PROVIDER_TIMEOUT_SECONDS = float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "10"))
