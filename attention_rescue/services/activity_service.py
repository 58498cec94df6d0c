"""
Activity Service — intake for raw activity events.

Events are validated, queued, and written to the activities table in
batches of 10. Navigation events also close the previous page visit into a
HistoryEntry (the pattern matcher's source data) and are evaluated.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Optional

from attention_rescue.data.models import (
    ActivityEvent,
    BrowsingContext,
    DistractionAssessment,
    HistoryEntry,
)
from attention_rescue.data.repository import Repository
from attention_rescue.data.validators import validate_activity_event
from attention_rescue.errors import StorageError
from attention_rescue.ml.features import analyze_navigation_pattern, categorize_url

logger = logging.getLogger(__name__)

BATCH_SIZE = 10


class ActivityService:
    """
    Single-consumer queue. A drain that is already running is never
    re-entered; a failed write puts the event back at the front and stops
    the drain so arrival order is kept for the retry.
    """

    def __init__(
        self,
        repo: Repository,
        evaluate: Callable[[BrowsingContext], DistractionAssessment],
        is_productive: Callable[[str, BrowsingContext], bool],
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self._evaluate = evaluate
        self._is_productive = is_productive
        self._clock = clock

        self.queue: Deque[ActivityEvent] = deque()
        self._processing = False

        self.current_visit: Optional[HistoryEntry] = None
        self._current_context: Optional[BrowsingContext] = None
        self.last_activity: Optional[datetime] = None

        # Hook for the engine: called with every finished visit
        self.on_visit_closed: Optional[Callable[[HistoryEntry], None]] = None

    # ── Public API ──────────────────────────────────────────────────────────

    def submit(self, event: ActivityEvent) -> Optional[DistractionAssessment]:
        """Validate, enqueue and drain. Navigation events return an assessment."""
        validate_activity_event(event)

        self.queue.append(event)
        self.last_activity = event.timestamp
        self.drain()

        if event.event_type != "navigation":
            return None

        self._close_visit(event.timestamp)
        self._open_visit(event)
        assessment = self._evaluate(event.context)
        if assessment.is_distraction and self.current_visit is not None:
            self.current_visit.intervention_triggered = True
        return assessment

    def drain(self) -> int:
        """Persist queued events in batches. Returns how many were written."""
        if self._processing or not self.queue:
            return 0
        self._processing = True
        written = 0
        try:
            while self.queue:
                batch = [self.queue.popleft() for _ in range(min(BATCH_SIZE, len(self.queue)))]
                for i, event in enumerate(batch):
                    try:
                        self.repo.save_activity(event)
                        written += 1
                    except StorageError as e:
                        logger.warning("Could not save activity for %s, re-queued: %s", event.url, e)
                        # failed event first, then the rest of this batch, then the older queue
                        self.queue.extendleft(reversed(batch[i:]))
                        return written
        finally:
            self._processing = False
        return written

    def mark_intervention_completed(self, url: str) -> None:
        if self.current_visit is not None and self.current_visit.url == url:
            self.current_visit.intervention_triggered = True
            self.current_visit.intervention_completed = True

    def close_current_visit(self) -> Optional[HistoryEntry]:
        """Finish the open visit now (used on shutdown)."""
        return self._close_visit(self._clock())

    def pending(self) -> int:
        return len(self.queue)

    # ── Visits ──────────────────────────────────────────────────────────────

    def _open_visit(self, event: ActivityEvent) -> None:
        self.current_visit = HistoryEntry(
            url=event.url,
            title=event.context.title,
            start_time=event.timestamp,
            category=categorize_url(event.url),
            navigation_pattern=analyze_navigation_pattern(event.context.recent_history),
        )
        self._current_context = event.context

    def _close_visit(self, end: datetime) -> Optional[HistoryEntry]:
        visit = self.current_visit
        if visit is None:
            return None
        self.current_visit = None

        visit.end_time = end
        visit.duration_minutes = max(0.0, (end - visit.start_time).total_seconds() / 60)
        visit.was_productive = (
            not visit.intervention_triggered or visit.intervention_completed
        ) and self._is_productive(visit.url, self._current_context)

        try:
            self.repo.add_history(visit)
        except StorageError as e:
            logger.warning("Could not save visit to %s: %s", visit.url, e)
        if self.on_visit_closed is not None:
            self.on_visit_closed(visit)
        return visit
