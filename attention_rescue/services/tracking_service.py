"""
Tracking Service — periodic housekeeping for a running engine.

Runs QTimers for the streak inactivity watchdog, the historical pattern
refresh, the persistence retry flush and the daily history prune.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, List, Optional

from PySide6.QtCore import QTimer

from attention_rescue.data.models import StreakEvent
from attention_rescue.errors import StorageError
from attention_rescue.services.engine import AttentionEngine

logger = logging.getLogger(__name__)

# Default intervals (minutes)
DEFAULT_INACTIVITY_CHECK_INTERVAL = 5
DEFAULT_PATTERN_REFRESH_INTERVAL = 60
DEFAULT_FLUSH_INTERVAL = 1
DEFAULT_PRUNE_INTERVAL = 24 * 60
HISTORY_RETENTION = timedelta(days=90)


class TrackingService:
    """
    Drives the engine's time-based work from the Qt event loop.

    Every callback is also a plain public method so tests (and the replay
    host) can trigger it without waiting for a timer.
    """

    def __init__(
        self,
        engine: AttentionEngine,
        on_streak_break: Optional[Callable[[StreakEvent], None]] = None,
    ) -> None:
        self.engine = engine
        self.on_streak_break = on_streak_break

        # Configurable intervals (minutes)
        self.inactivity_interval = DEFAULT_INACTIVITY_CHECK_INTERVAL
        self.pattern_interval = DEFAULT_PATTERN_REFRESH_INTERVAL
        self.flush_interval = DEFAULT_FLUSH_INTERVAL
        self.prune_interval = DEFAULT_PRUNE_INTERVAL

        self._inactivity_timer = QTimer()
        self._inactivity_timer.timeout.connect(self.check_inactivity)

        self._pattern_timer = QTimer()
        self._pattern_timer.timeout.connect(self.refresh_patterns)

        self._flush_timer = QTimer()
        self._flush_timer.timeout.connect(self.flush)

        self._prune_timer = QTimer()
        self._prune_timer.timeout.connect(self.prune_history)

    # ── Public API ──────────────────────────────────────────────────────────

    def start(self) -> None:
        self._inactivity_timer.start(int(self.inactivity_interval * 60 * 1000))
        self._pattern_timer.start(int(self.pattern_interval * 60 * 1000))
        self._flush_timer.start(int(self.flush_interval * 60 * 1000))
        self._prune_timer.start(int(self.prune_interval * 60 * 1000))
        logger.info("Tracking timers started: inactivity every %.0f min, patterns every %.0f min",
                    self.inactivity_interval, self.pattern_interval)

    def stop_all(self) -> None:
        self._inactivity_timer.stop()
        self._pattern_timer.stop()
        self._flush_timer.stop()
        self._prune_timer.stop()

    def is_running(self) -> bool:
        return self._inactivity_timer.isActive()

    def update_intervals(
        self,
        inactivity_min: Optional[float] = None,
        pattern_min: Optional[float] = None,
        flush_min: Optional[float] = None,
    ) -> None:
        """Change intervals; running timers pick them up on the next start()."""
        if inactivity_min is not None:
            self.inactivity_interval = inactivity_min
        if pattern_min is not None:
            self.pattern_interval = pattern_min
        if flush_min is not None:
            self.flush_interval = flush_min

    # ── Timer callbacks ─────────────────────────────────────────────────────

    def check_inactivity(self) -> List[StreakEvent]:
        events = self.engine.check_inactivity()
        for event in events:
            logger.info("Streak of %d ended by inactivity.", event.streak_value)
            if self.on_streak_break:
                self.on_streak_break(event)
        return events

    def refresh_patterns(self) -> bool:
        rebuilt = self.engine.refresh_patterns()
        if rebuilt:
            logger.info("Historical patterns refreshed.")
        return rebuilt

    def flush(self) -> bool:
        ok = self.engine.flush()
        if not ok:
            logger.warning("Some writes are still pending after flush.")
        return ok

    def prune_history(self) -> int:
        cutoff = self.engine.now() - HISTORY_RETENTION
        try:
            return self.engine.prune_history(cutoff)
        except StorageError as e:
            logger.warning("History prune failed: %s", e)
            return 0


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Replaces "cron" for a desktop process. Every few minutes it asks the
#   engine to break stale streaks, rebuild the hourly pattern table, retry
#   failed writes, and once a day drop history older than 90 days.
#
# Key design decisions:
#   - QTimer (PySide6) so callbacks run on the Qt event loop thread, the
#     same thread that feeds activity into the engine. No extra threads.
#   - Timers only decide *when*. All *whether* logic (30-minute inactivity,
#     60-minute staleness) lives in the engine and compares wall-clock
#     timestamps, so a laptop waking from sleep still gets it right.
#   - Callbacks injected via constructor, so hosts can react (notify,
#     update a badge) without this service knowing about any UI.
