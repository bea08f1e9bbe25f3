# backend/backoffice/config.py
from __future__ import annotations
import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file next to the instance folder unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///backoffice.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Currency epsilon for payment reconciliation (cents)
    PAYMENT_TOLERANCE_CENTS = int(os.environ.get("PAYMENT_TOLERANCE_CENTS", "1"))
    DOCUMENT_NUMBER_PAD = int(os.environ.get("DOCUMENT_NUMBER_PAD", "6"))
    # Budgets and quotes: valid_until = issued_at + this many days
    DOCUMENT_VALIDITY_DAYS = int(os.environ.get("DOCUMENT_VALIDITY_DAYS", "30"))

    # Lock contention handling for units of work
    LOCK_RETRY_ATTEMPTS = int(os.environ.get("LOCK_RETRY_ATTEMPTS", "3"))
    LOCK_RETRY_BACKOFF = float(os.environ.get("LOCK_RETRY_BACKOFF", "0.1"))

    # Prefixes seeded into document_sequences by `flask system init`
    DEFAULT_SEQUENCE_PREFIXES = {
        "sale": "FAC-",
        "purchase": "COMP-",
        "budget": "PRES-",
        "quote": "COT-",
        "receipt": "REC-",
    }
