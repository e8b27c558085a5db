# backend/bizops/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/bizops.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///bizops.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Jurisdiction used when a business has no country configured
    DEFAULT_COUNTRY_CODE = os.environ.get("DEFAULT_COUNTRY_CODE", "UG")

    # Stamped on every tax-audit record
    TAX_CALCULATION_VERSION = os.environ.get("TAX_CALCULATION_VERSION", "1.0")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Attempts for sale creation when a storage conflict (lock, duplicate number) occurs
    NUMBERING_RETRY_ATTEMPTS = int(os.environ.get("NUMBERING_RETRY_ATTEMPTS", "3"))
