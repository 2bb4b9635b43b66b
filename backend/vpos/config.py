# backend/vpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///vpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # SQLite ignores FOR UPDATE, so checkouts take the write lock up front
    SQLITE_IMMEDIATE_TRANSACTIONS = _env_bool("SQLITE_IMMEDIATE_TRANSACTIONS", True)

    # Empty means "not configured": the tax engine's default rate applies
    DEFAULT_TAX_JURISDICTION = os.environ.get("DEFAULT_TAX_JURISDICTION", "")

    # Age verification policy
    MIN_TOBACCO_AGE = int(os.environ.get("MIN_TOBACCO_AGE", "21"))
    ALLOW_OVERRIDE_EXPIRED_ID = _env_bool("ALLOW_OVERRIDE_EXPIRED_ID", True)
    AGE_VERIFICATION_TTL_MINUTES = int(os.environ.get("AGE_VERIFICATION_TTL_MINUTES", "30"))

    # Audit sink
    AUDIT_SPOOL_PATH = os.environ.get("AUDIT_SPOOL_PATH", "")  # empty -> <instance>/audit_spool.sqlite3
    AUDIT_COLLECTOR_URL = os.environ.get("AUDIT_COLLECTOR_URL", "")  # empty -> local audit table
    AUDIT_RETRY_INTERVAL_SECONDS = float(os.environ.get("AUDIT_RETRY_INTERVAL_SECONDS", "15"))
    AUDIT_HTTP_TIMEOUT_SECONDS = float(os.environ.get("AUDIT_HTTP_TIMEOUT_SECONDS", "5"))
    AUDIT_WORKER_ENABLED = _env_bool("AUDIT_WORKER_ENABLED", True)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_JSON = _env_bool("LOG_JSON", False)
