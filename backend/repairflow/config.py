# backend/repairflow/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/repairflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///repairflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Billing defaults (tax rate is a decimal string, 0..1)
    DEFAULT_TAX_RATE = os.environ.get("DEFAULT_TAX_RATE", "0.0825")
    ESTIMATE_VALIDITY_DAYS = _int_env("ESTIMATE_VALIDITY_DAYS", 7)
    INVOICE_DUE_DAYS = _int_env("INVOICE_DUE_DAYS", 7)

    # Warranty window per repair type, in days. 0 means not covered.
    WARRANTY_POLICY_DAYS = {
        "screen": 90,
        "battery": 30,
        "charging-port": 60,
        "water-damage": 0,
    }
    DEFAULT_WARRANTY_DAYS = _int_env("DEFAULT_WARRANTY_DAYS", 90)

    # Human-readable document number prefixes
    DOCUMENT_PREFIXES = {
        "TICKET": "FIX",
        "ESTIMATE": "EST",
        "INVOICE": "INV",
        "WARRANTY_CLAIM": "WC",
    }
    DOCUMENT_NUMBER_PAD = 4
