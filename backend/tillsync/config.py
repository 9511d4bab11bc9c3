# backend/tillsync/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillsync.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillsync.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Offline sync tuning
    # Devices still ACTIVE but silent for longer than this count as stale in the risk overview
    OFFLINE_STALE_THRESHOLD_HOURS = int(os.environ.get("OFFLINE_STALE_THRESHOLD_HOURS", "2"))
    OFFLINE_CONFLICT_PAGE_SIZE = int(os.environ.get("OFFLINE_CONFLICT_PAGE_SIZE", "50"))
    OFFLINE_CONFLICT_MAX_PAGE_SIZE = 200
