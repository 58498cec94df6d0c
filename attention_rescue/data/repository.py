"""
Repository — the single place where SQL lives.

Every other module talks to Repository, never to raw SQL. Any sqlite3 failure
is re-raised as StorageError so callers can log and carry on with what they
have in memory.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from attention_rescue.errors import StorageError

from .models import ActivityEvent, HistoryEntry, SiteClassification

logger = logging.getLogger(__name__)

# helper: parse ISO datetime strings from SQLite
_parse_dt = lambda s: datetime.fromisoformat(s) if s else None

# KV keys
KEY_SETTINGS = "user_settings"
KEY_WEIGHTS = "model_weights"
KEY_STREAK = "streak"
KEY_PROGRESS = "user_progress"
KEY_DISMISSALS = "dismissals"


class Repository:
    """Data-access layer wrapping a sqlite3 connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ── Key/value ───────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded JSON blob for key, or None."""
        try:
            row = self.conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"read failed for {key}: {e}", key) from e
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except ValueError as e:
            raise StorageError(f"corrupt value for {key}: {e}", key) from e

    def set(self, key: str, value: Any) -> None:
        try:
            self.conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, json.dumps(value), datetime.now().isoformat()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"write failed for {key}: {e}", key) from e

    def delete(self, key: str) -> None:
        try:
            self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"delete failed for {key}: {e}", key) from e

    # ── Site classifications ────────────────────────────────────────────────

    def save_classification(self, classification: SiteClassification) -> None:
        c = classification
        try:
            self.conn.execute(
                """INSERT INTO site_classifications
                    (url, category, confidence, source, custom_label, last_updated)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(url) DO UPDATE SET
                    category = excluded.category, confidence = excluded.confidence,
                    source = excluded.source, custom_label = excluded.custom_label,
                    last_updated = excluded.last_updated""",
                (
                    c.url, c.category, c.confidence, c.source, c.custom_label,
                    c.last_updated.isoformat() if c.last_updated else None,
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"could not save classification for {c.url}: {e}") from e

    def get_classification(self, url: str) -> Optional[SiteClassification]:
        try:
            row = self.conn.execute(
                "SELECT * FROM site_classifications WHERE url = ?", (url,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"could not read classification for {url}: {e}") from e
        return self._row_to_classification(row) if row else None

    def list_classifications(self, source: Optional[str] = None) -> List[SiteClassification]:
        try:
            if source is not None:
                rows = self.conn.execute(
                    "SELECT * FROM site_classifications WHERE source = ? ORDER BY url",
                    (source,),
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM site_classifications ORDER BY url"
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"could not list classifications: {e}") from e
        return [self._row_to_classification(r) for r in rows]

    def delete_classification(self, url: str) -> None:
        try:
            self.conn.execute("DELETE FROM site_classifications WHERE url = ?", (url,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"could not delete classification for {url}: {e}") from e

    # ── Browsing history ────────────────────────────────────────────────────

    def add_history(self, entry: HistoryEntry) -> HistoryEntry:
        try:
            cur = self.conn.execute(
                """INSERT INTO browsing_history
                    (url, title, start_time, end_time, duration_minutes, category,
                     navigation_pattern, was_productive, intervention_triggered,
                     intervention_completed)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    entry.url, entry.title,
                    entry.start_time.isoformat() if entry.start_time else datetime.now().isoformat(),
                    entry.end_time.isoformat() if entry.end_time else None,
                    entry.duration_minutes, entry.category, entry.navigation_pattern,
                    int(entry.was_productive), int(entry.intervention_triggered),
                    int(entry.intervention_completed),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"could not save history for {entry.url}: {e}") from e
        entry.id = cur.lastrowid
        return entry

    def list_history(
        self,
        start_after: Optional[datetime] = None,
        start_before: Optional[datetime] = None,
        limit: int = 10000,
    ) -> List[HistoryEntry]:
        query = "SELECT * FROM browsing_history"
        conditions: List[str] = []
        params: list = []

        if start_after:
            conditions.append("start_time >= ?")
            params.append(start_after.isoformat())
        if start_before:
            conditions.append("start_time <= ?")
            params.append(start_before.isoformat())

        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY start_time LIMIT ?"
        params.append(limit)

        try:
            rows = self.conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"could not read history: {e}") from e
        return [self._row_to_history(r) for r in rows]

    def count_history(self) -> int:
        try:
            row = self.conn.execute("SELECT COUNT(*) FROM browsing_history").fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"could not count history: {e}") from e
        return row[0]

    def prune_history(self, before: datetime) -> int:
        """Delete visits that started before the cutoff. Returns count deleted."""
        try:
            cur = self.conn.execute(
                "DELETE FROM browsing_history WHERE start_time < ?", (before.isoformat(),)
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"could not prune history: {e}") from e
        logger.info("Pruned %d history entries", cur.rowcount)
        return cur.rowcount

    # ── Activities ──────────────────────────────────────────────────────────

    def save_activity(self, event: ActivityEvent) -> None:
        try:
            self.conn.execute(
                "INSERT INTO activities (url, event_type, timestamp, duration, context) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    event.url, event.event_type, event.timestamp.isoformat(),
                    event.duration, json.dumps(event.context.to_dict()),
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"could not save activity for {event.url}: {e}") from e

    def count_activities(self) -> int:
        try:
            row = self.conn.execute("SELECT COUNT(*) FROM activities").fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"could not count activities: {e}") from e
        return row[0]

    # ── Data management ─────────────────────────────────────────────────────

    def export_data(self) -> Dict[str, Any]:
        """Everything the engine knows, as JSON-friendly dicts."""
        try:
            kv_rows = self.conn.execute("SELECT key, value FROM kv_store").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"could not export data: {e}") from e
        return {
            "kv": {r["key"]: json.loads(r["value"]) for r in kv_rows},
            "classifications": [c.to_dict() for c in self.list_classifications()],
            "history_count": self.count_history(),
        }

    def reset_all_data(self) -> None:
        try:
            for table in ["kv_store", "site_classifications", "browsing_history", "activities"]:
                self.conn.execute(f"DELETE FROM {table}")
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"could not reset data: {e}") from e
        logger.warning("All data has been reset.")

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_classification(row: sqlite3.Row) -> SiteClassification:
        return SiteClassification(
            url=row["url"], category=row["category"],
            confidence=row["confidence"], source=row["source"],
            custom_label=row["custom_label"],
            last_updated=_parse_dt(row["last_updated"]),
        )

    @staticmethod
    def _row_to_history(row: sqlite3.Row) -> HistoryEntry:
        return HistoryEntry(
            id=row["id"], url=row["url"], title=row["title"] or "",
            start_time=_parse_dt(row["start_time"]),
            end_time=_parse_dt(row["end_time"]),
            duration_minutes=row["duration_minutes"] or 0.0,
            category=row["category"],
            navigation_pattern=row["navigation_pattern"],
            was_productive=bool(row["was_productive"]),
            intervention_triggered=bool(row["intervention_triggered"]),
            intervention_completed=bool(row["intervention_completed"]),
        )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The Repository is the ONLY place raw SQL queries live. Every other layer
#   calls methods like repo.get(KEY_STREAK) or repo.add_history(entry).
#
# Key methods:
#   - get/set: JSON blobs keyed by name. This is the generic storage port
#     that the scorer, streak machine and reward engine persist through.
#   - classifications: user/AI verdicts per URL or domain.
#   - history: finished visits the pattern matcher buckets every hour.
#
# Data flow:
#   Service → Repository.method() → SQL → sqlite3.Row → dataclass model
#
# Interviewer-friendly talking points:
#   1. Every sqlite3.Error becomes StorageError at this boundary, so services
#      only ever catch one exception type for "the disk said no."
#   2. UPSERT (ON CONFLICT DO UPDATE) keeps set() idempotent and gives
#      read-after-write consistency for the same key.
