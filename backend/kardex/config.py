# backend/kardex/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/kardex.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///kardex.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Document numbers roll over by year/month in this zone, whatever the host TZ is.
    BUSINESS_TIME_ZONE = os.environ.get("BUSINESS_TIME_ZONE", "America/Bogota")

    # Used when ApplicationSettings has no explicit allow_negative_stock value.
    DEFAULT_ALLOW_NEGATIVE_STOCK = os.environ.get("DEFAULT_ALLOW_NEGATIVE_STOCK", "1") not in ("0", "false", "False")

    FINALIZE_ITEM_PAGE_SIZE = int(os.environ.get("FINALIZE_ITEM_PAGE_SIZE", "100"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Replays of a service operation after lock conflicts / stale rows.
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.1"))
