"""
Dismissal Service — counts repeated per-site dismissals and backs the engine
off when the user keeps waving interventions away.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, List, Optional, Tuple

import numpy as np

from attention_rescue.data.models import AdaptationStrategy, DismissalRecord
from attention_rescue.data.repository import KEY_DISMISSALS, Repository
from attention_rescue.errors import StorageError

logger = logging.getLogger(__name__)

MINOR_THRESHOLD = 3
MODERATE_THRESHOLD = 5
MAJOR_THRESHOLD = 10

NO_ADAPTATION = AdaptationStrategy()
MINOR = AdaptationStrategy("moderate", 1.5, 0, False)
MODERATE = AdaptationStrategy("moderate", 2.0, -1, True)
MAJOR = AdaptationStrategy("minimal", 3.0, -2, True)

HIGH_RATE_WINDOW = timedelta(hours=1)
HIGH_RATE_LIMIT = 3
MAX_SUGGESTIONS = 5
MAX_RECENT_DISMISSALS = 200


def strategy_for(count: int) -> AdaptationStrategy:
    if count >= MAJOR_THRESHOLD:
        return MAJOR
    if count >= MODERATE_THRESHOLD:
        return MODERATE
    if count >= MINOR_THRESHOLD:
        return MINOR
    return NO_ADAPTATION


class DismissalService:
    """
    One DismissalRecord per site, created on first dismissal and deleted when
    an intervention on that site is completed. Records are persisted after
    every change.
    """

    def __init__(
        self,
        repo: Optional[Repository] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self._clock = clock
        self._records: Dict[str, DismissalRecord] = {}
        self._recent: Deque[datetime] = deque(maxlen=MAX_RECENT_DISMISSALS)
        self._load()

    # ── Mutations ───────────────────────────────────────────────────────────

    def record_dismissal(self, url: str) -> Tuple[int, AdaptationStrategy]:
        """Bump the site's counter. Returns (new count, strategy for that count)."""
        now = self._clock()
        record = self._records.get(url)
        if record is None:
            record = DismissalRecord(url=url, timestamp=now)
            self._records[url] = record
        else:
            record.consecutive_count += 1
            record.timestamp = now
        self._recent.append(now)
        self._save()

        strategy = strategy_for(record.consecutive_count)
        if strategy is not NO_ADAPTATION:
            logger.info("%s dismissed %d times in a row, cooldown x%.1f",
                        url, record.consecutive_count, strategy.cooldown_multiplier)
        return record.consecutive_count, strategy

    def record_completion(self, url: str) -> None:
        if self._records.pop(url, None) is not None:
            self._save()

    def clear(self) -> None:
        self._records.clear()
        self._recent.clear()
        self._save()

    def clear_url(self, url: str) -> None:
        self.record_completion(url)

    # ── Queries ─────────────────────────────────────────────────────────────

    def get_record(self, url: str) -> Optional[DismissalRecord]:
        return self._records.get(url)

    def get_dismissal_count(self, url: str) -> int:
        record = self._records.get(url)
        return record.consecutive_count if record else 0

    def get_strategy(self, url: str) -> AdaptationStrategy:
        return strategy_for(self.get_dismissal_count(url))

    def get_total_dismissals(self, window: timedelta = timedelta(hours=24)) -> int:
        """Dismissals across all sites within the trailing window."""
        cutoff = self._clock() - window
        return sum(1 for ts in self._recent if ts >= cutoff)

    def get_dismissal_rate(self, window: timedelta = timedelta(hours=24)) -> float:
        """Dismissals per hour over the trailing window."""
        hours = window.total_seconds() / 3600
        return self.get_total_dismissals(window) / hours if hours else 0.0

    def is_high_dismissal_rate(self) -> bool:
        return self.get_total_dismissals(HIGH_RATE_WINDOW) > HIGH_RATE_LIMIT

    def get_most_dismissed(self, limit: int = 5) -> List[Tuple[str, int]]:
        ranked = sorted(self._records.values(), key=lambda r: r.consecutive_count, reverse=True)
        return [(r.url, r.consecutive_count) for r in ranked[:limit]]

    def suggest_whitelist_additions(self, whitelist: List[str]) -> List[str]:
        """Sites dismissed at least 5 times that no whitelist entry already covers."""
        return [
            url for url, count in self.get_most_dismissed(len(self._records))
            if count >= MODERATE_THRESHOLD and not any(w in url for w in whitelist)
        ][:MAX_SUGGESTIONS]

    def get_statistics(self) -> dict:
        counts = np.array([r.consecutive_count for r in self._records.values()], dtype=float)
        return {
            "total_dismissals": int(counts.sum()) if counts.size else 0,
            "unique_urls": int(counts.size),
            "average_per_url": float(counts.mean()) if counts.size else 0.0,
            "high_dismissal_urls": int((counts >= MODERATE_THRESHOLD).sum()),
            "dismissal_rate": self.get_dismissal_rate(),
        }

    # ── Import / export ─────────────────────────────────────────────────────

    def export_records(self) -> List[dict]:
        return [r.to_dict() for r in self._records.values()]

    def import_records(self, records: List[dict]) -> None:
        self._records = {}
        for d in records:
            record = DismissalRecord.from_dict(d)
            self._records[record.url] = record
        self._save()

    # ── Persistence ─────────────────────────────────────────────────────────

    def _load(self) -> None:
        if self.repo is None:
            return
        try:
            stored = self.repo.get(KEY_DISMISSALS)
        except StorageError as e:
            logger.warning("Could not load dismissal records: %s", e)
            return
        for d in stored or []:
            record = DismissalRecord.from_dict(d)
            self._records[record.url] = record

    def _save(self) -> None:
        if self.repo is None:
            return
        try:
            self.repo.set(KEY_DISMISSALS, self.export_records())
        except StorageError as e:
            logger.warning("Could not persist dismissal records: %s", e)
