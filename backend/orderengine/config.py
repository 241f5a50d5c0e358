# backend/orderengine/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/orderengine.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///orderengine.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a storage call may wait on a lock or connection before failing
    STORAGE_TIMEOUT_SECONDS = float(os.environ.get("STORAGE_TIMEOUT_SECONDS", "5"))

    # Per-terminal pause after a commit before the next checkout is accepted
    COMMIT_COOLDOWN_SECONDS = float(os.environ.get("COMMIT_COOLDOWN_SECONDS", "0.75"))

    # Mirror cancellations onto the previous history row (legacy dashboards)
    AUDIT_LEGACY_CANCEL_SYNC = _env_flag("AUDIT_LEGACY_CANCEL_SYNC")

    # Deliver completion events to in-process subscribers
    NOTIFIER_DISPATCH_ENABLED = _env_flag("NOTIFIER_DISPATCH_ENABLED", "true")
