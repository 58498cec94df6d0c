"""
Pattern Matcher — compares the current context against hourly-refreshed
buckets of past distraction behaviour.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from attention_rescue.data.models import (
    BrowsingContext,
    HistoricalPatternBucket,
    SimilarityScore,
)
from attention_rescue.data.repository import Repository
from attention_rescue.errors import StaleDerivedStateError, StorageError

from .features import analyze_navigation_pattern, categorize_url

logger = logging.getLogger(__name__)

REFRESH_INTERVAL = timedelta(minutes=60)
LOOKBACK = timedelta(days=30)
MIN_BUCKET_FREQUENCY = 2
MATCH_THRESHOLD = 0.6
MAX_EXPLANATIONS = 3

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class PatternMatcher:
    """Hourly (hour, weekday, category) buckets over the last 30 days of visits."""

    def __init__(
        self,
        repo: Repository,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self._clock = clock
        self._buckets: List[HistoricalPatternBucket] = []
        self._last_update: Optional[datetime] = None

    # ── Public API ──────────────────────────────────────────────────────────

    def calculate_similarity(self, context: BrowsingContext) -> SimilarityScore:
        self.update_if_needed()

        patterns = [b for b in self._buckets if b.was_distraction]
        if not patterns:
            return SimilarityScore()

        category = categorize_url(context.url)
        nav_pattern = analyze_navigation_pattern(context.recent_history)

        hours = np.array([p.hour for p in patterns])
        days = np.array([p.weekday for p in patterns])
        freq = np.array([p.frequency for p in patterns], dtype=float)

        temporal = self.temporal_similarity(context.hour, context.weekday, hours, days)
        categorical = np.array([1.0 if p.category == category else 0.0 for p in patterns])
        navigational = np.array(
            [1.0 if p.navigation_pattern == nav_pattern else 0.0 for p in patterns]
        )
        weight = np.minimum(freq / 10.0, 1.0)

        count = len(patterns)
        temporal_score = float(np.sum(temporal * weight) / count)
        categorical_score = float(np.sum(categorical * weight) / count)
        navigational_score = float(np.sum(navigational * weight) / count)

        matches = [
            f"{p.category} at {p.hour}:00 on {self._day_name(p.weekday)}"
            for p, t, c in zip(patterns, temporal, categorical)
            if t > 0.7 and c > 0.5
        ]

        return SimilarityScore(
            overall=0.4 * temporal_score + 0.4 * categorical_score + 0.2 * navigational_score,
            temporal=temporal_score,
            categorical=categorical_score,
            navigational=navigational_score,
            matching_patterns=matches[:MAX_EXPLANATIONS],
        )

    def matches_distraction_pattern(self, context: BrowsingContext) -> bool:
        return self.calculate_similarity(context).overall > MATCH_THRESHOLD

    @staticmethod
    def temporal_similarity(hour: int, weekday: int, hours: np.ndarray, days: np.ndarray) -> np.ndarray:
        """0.4 * day similarity + 0.6 * hour similarity, per bucket."""
        day_diff = np.abs(days - weekday)
        day_sim = np.where(day_diff == 0, 1.0, np.where(day_diff == 1, 0.5, 0.0))

        hour_diff = np.abs(hours - hour)
        hour_sim = np.select([hour_diff == 0, hour_diff == 1, hour_diff == 2], [1.0, 0.7, 0.4], 0.0)

        return day_sim * 0.4 + hour_sim * 0.6

    def update_if_needed(self) -> bool:
        """Rebuild if the table is older than the refresh interval. Returns True if rebuilt."""
        if not self.is_stale():
            return False
        try:
            self._rebuild()
        except StorageError as e:
            logger.warning("Pattern rebuild failed, keeping %d old buckets: %s",
                           len(self._buckets), e)
            return False
        return True

    def force_update(self) -> None:
        self._last_update = None
        self.update_if_needed()

    def is_stale(self) -> bool:
        if self._last_update is None:
            return True
        return self._clock() - self._last_update > REFRESH_INTERVAL

    def get_buckets(self, allow_stale: bool = True) -> List[HistoricalPatternBucket]:
        """Current table. With allow_stale=False a stale table raises instead."""
        if not allow_stale and self.is_stale():
            age = (
                (self._clock() - self._last_update).total_seconds() / 60.0
                if self._last_update else float("inf")
            )
            raise StaleDerivedStateError("pattern table", age)
        return list(self._buckets)

    def top_distraction_patterns(self, limit: int = 5) -> List[HistoricalPatternBucket]:
        patterns = [b for b in self._buckets if b.was_distraction]
        patterns.sort(key=lambda b: b.frequency, reverse=True)
        return patterns[:limit]

    def get_statistics(self) -> dict:
        distraction = sum(1 for b in self._buckets if b.was_distraction)
        return {
            "total_patterns": len(self._buckets),
            "distraction_patterns": distraction,
            "productive_patterns": len(self._buckets) - distraction,
            "last_update": self._last_update,
        }

    def clear(self) -> None:
        self._buckets = []
        self._last_update = None

    # ── Internal ────────────────────────────────────────────────────────────

    def _rebuild(self) -> None:
        now = self._clock()
        history = self.repo.list_history(start_after=now - LOOKBACK, start_before=now)

        table: Dict[Tuple[int, int, str], HistoricalPatternBucket] = {}
        for entry in history:
            if entry.start_time is None:
                continue
            hour = entry.start_time.hour
            weekday = (entry.start_time.weekday() + 1) % 7
            category = entry.category or categorize_url(entry.url)
            key = (hour, weekday, category)
            if key in table:
                table[key].frequency += 1
            else:
                table[key] = HistoricalPatternBucket(
                    hour=hour,
                    weekday=weekday,
                    category=category,
                    navigation_pattern=entry.navigation_pattern,
                    was_distraction=not entry.was_productive,
                )

        self._buckets = [b for b in table.values() if b.frequency >= MIN_BUCKET_FREQUENCY]
        self._last_update = now
        logger.info("Updated %d historical patterns from %d visits",
                    len(self._buckets), len(history))

    @staticmethod
    def _day_name(day: int) -> str:
        return DAY_NAMES[day] if 0 <= day < len(DAY_NAMES) else "Unknown"


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Answers "does right now look like the times you usually get distracted?"
#   by comparing the current hour/day/category/navigation against buckets
#   built from the last 30 days of visits.
#
# Key design decisions:
#   - Lazy hourly rebuild: the table is rebuilt on first use after it goes
#     stale, never on a timer thread, so callers never wait on a lock.
#   - Frequency weighting: a bucket seen 10+ times counts fully, one seen
#     twice counts 20%. One-off visits (frequency 1) are dropped entirely.
#   - numpy vectorizes the per-bucket similarity; with ~24*7*5 possible
#     buckets it's small, but it keeps the maths in one readable expression.
#
# Interviewer-friendly talking points:
#   1. The score is averaged over ALL distraction buckets, so a user with
#      many varied habits gets lower similarity than a creature of habit.
#      That's intentional: predictable patterns are the useful ones.
#   2. A failed rebuild keeps the old table; stale-but-present beats empty.
