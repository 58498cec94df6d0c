"""
SQLite database initialization and connection management.

Single responsibility: own the connection, create tables.
All actual queries live in Repository.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Default DB lives at the repo root
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "attention_rescue.db"

SCHEMA_SQL = """
-- Key/value blobs (settings, weights, streak, progress, dismissals) -----------
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT    PRIMARY KEY,
    value       TEXT    NOT NULL,
    updated_at  TEXT    NOT NULL DEFAULT (datetime('now'))
);

-- Site classifications ---------------------------------------------------------
CREATE TABLE IF NOT EXISTS site_classifications (
    url             TEXT    PRIMARY KEY,
    category        TEXT    NOT NULL,
    confidence      REAL    NOT NULL,
    source          TEXT    NOT NULL,
    custom_label    TEXT,
    last_updated    TEXT
);

-- Completed page visits (pattern matcher source) -------------------------------
CREATE TABLE IF NOT EXISTS browsing_history (
    id                      INTEGER PRIMARY KEY AUTOINCREMENT,
    url                     TEXT    NOT NULL,
    title                   TEXT,
    start_time              TEXT    NOT NULL,
    end_time                TEXT,
    duration_minutes        REAL    DEFAULT 0,
    category                TEXT    NOT NULL DEFAULT 'other',
    navigation_pattern      TEXT    NOT NULL DEFAULT 'unknown',
    was_productive          INTEGER NOT NULL DEFAULT 0,
    intervention_triggered  INTEGER NOT NULL DEFAULT 0,
    intervention_completed  INTEGER NOT NULL DEFAULT 0
);

-- Raw activity events -----------------------------------------------------------
CREATE TABLE IF NOT EXISTS activities (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    url         TEXT    NOT NULL,
    event_type  TEXT    NOT NULL,
    timestamp   TEXT    NOT NULL,
    duration    REAL,
    context     TEXT
);

-- Indexes for common queries ------------------------------------------------------
CREATE INDEX IF NOT EXISTS idx_history_start    ON browsing_history(start_time);
CREATE INDEX IF NOT EXISTS idx_activities_ts    ON activities(timestamp);
"""


class Database:
    """Thin wrapper around a SQLite connection."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self.conn: Optional[sqlite3.Connection] = None

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open (or return existing) connection and ensure schema exists."""
        if self.conn is not None:
            return self.conn
        logger.info("Connecting to SQLite at %s", self.db_path)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        return self.conn

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed.")

    # -- internal ------------------------------------------------------------

    def _create_tables(self) -> None:
        assert self.conn is not None
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()
        logger.info("Database schema ensured.")


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Manages the SQLite connection and makes sure all tables exist on startup.
#
# Key pieces:
#   - kv_store: the "key/value storage collaborator." Long-lived engine state
#     (weights, streak, progress, settings) is one JSON blob per key.
#   - browsing_history: one row per finished page visit. The pattern matcher
#     reads the last 30 days of it once an hour.
#   - activities: the raw event log the intake queue drains into.
#
# Interviewer-friendly talking points:
#   1. Why a KV table inside SQLite? The engine only needs get/set with
#      read-after-write consistency, and SQLite gives that for free.
#   2. check_same_thread=False: the Qt timers and the engine share one
#      connection; the engine's lock serializes access.
