"""
Feedback Service — turns user behaviour into learning signals for the online
scorer and the stored site classifications.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from attention_rescue.data.models import BrowsingContext, FeedbackItem
from attention_rescue.data.repository import Repository
from attention_rescue.errors import ValidationError
from attention_rescue.ml.scorer import OnlineScorer
from attention_rescue.services.classification_service import ClassificationService

logger = logging.getLogger(__name__)

DISMISSALS_BEFORE_LEARNING = 3


class FeedbackType:
    MANUAL_CLASSIFICATION = "manual_classification"
    INTERVENTION_COMPLETED = "intervention_completed"
    INTERVENTION_DISMISSED = "intervention_dismissed"
    SESSION_PRODUCTIVE = "session_productive"
    SESSION_DISTRACTED = "session_distracted"


@dataclass
class FeedbackEvent:
    type: str
    url: str
    timestamp: datetime
    context: BrowsingContext
    metadata: Dict[str, Any] = field(default_factory=dict)


class FeedbackService:
    def __init__(
        self,
        repo: Repository,
        scorer: OnlineScorer,
        classifications: ClassificationService,
    ) -> None:
        self.repo = repo
        self.scorer = scorer
        self.classifications = classifications
        self._handlers = {
            FeedbackType.MANUAL_CLASSIFICATION: self._manual_classification,
            FeedbackType.INTERVENTION_COMPLETED: self._intervention_completed,
            FeedbackType.INTERVENTION_DISMISSED: self._intervention_dismissed,
            FeedbackType.SESSION_PRODUCTIVE: self._session_productive,
            FeedbackType.SESSION_DISTRACTED: self._session_distracted,
        }

    def process(self, event: FeedbackEvent) -> None:
        handler = self._handlers.get(event.type)
        if handler is None:
            raise ValidationError([f"unknown feedback type '{event.type}'"])
        logger.debug("Processing feedback %s for %s", event.type, event.url)
        handler(event)

    def batch_process(self, events: Iterable[FeedbackEvent]) -> int:
        """Process each event on its own; one failure doesn't stop the rest. Returns successes."""
        ok = 0
        for event in events:
            try:
                self.process(event)
                ok += 1
            except Exception:
                logger.exception("Failed to process feedback event %s for %s", event.type, event.url)
        return ok

    def learn_from_history(self, start: datetime, end: datetime) -> int:
        """Replay finished visits as feedback. Returns how many were used."""
        used = 0
        for entry in self.repo.list_history(start_after=start, start_before=end):
            if not entry.intervention_triggered and not entry.was_productive:
                continue
            context = BrowsingContext(
                url=entry.url, title=entry.title, timestamp=entry.start_time,
                hour=entry.start_time.hour,
                weekday=(entry.start_time.weekday() + 1) % 7,
                session_minutes=entry.duration_minutes,
            )
            self.scorer.update_with_feedback(FeedbackItem(
                url=entry.url, was_distraction=not entry.was_productive,
                timestamp=entry.start_time, context=context,
            ))
            used += 1
        logger.info("Learned from %d history entries", used)
        return used

    def get_feedback_stats(self) -> dict:
        history = self.scorer.get_feedback_history()
        distraction = sum(1 for f in history if f.was_distraction)
        return {
            "total": len(history),
            "distraction": distraction,
            "productive": len(history) - distraction,
        }

    # ── Handlers ────────────────────────────────────────────────────────────

    def _teach(self, event: FeedbackEvent, was_distraction: bool) -> None:
        self.scorer.update_with_feedback(FeedbackItem(
            url=event.url, was_distraction=was_distraction,
            timestamp=event.timestamp, context=event.context,
        ))

    def _manual_classification(self, event: FeedbackEvent) -> None:
        category: Optional[str] = event.metadata.get("category")
        if not category:
            raise ValidationError(["manual classification requires a category"])
        label = event.metadata.get("custom_label")
        if event.metadata.get("apply_to_domain"):
            self.classifications.save_domain_classification(event.url, category, label)
        else:
            self.classifications.save_user_classification(event.url, category, label)
        self._teach(event, was_distraction=(category == "distraction"))

    def _intervention_completed(self, event: FeedbackEvent) -> None:
        self._teach(event, was_distraction=True)
        self.classifications.update_from_behavior(event.url, False, event.context)

    def _intervention_dismissed(self, event: FeedbackEvent) -> None:
        if event.metadata.get("dismissal_count", 1) < DISMISSALS_BEFORE_LEARNING:
            return
        self._teach(event, was_distraction=False)
        self.classifications.update_from_behavior(event.url, True, event.context)

    def _session_productive(self, event: FeedbackEvent) -> None:
        self._teach(event, was_distraction=False)
        self.classifications.update_from_behavior(event.url, True, event.context)

    def _session_distracted(self, event: FeedbackEvent) -> None:
        self._teach(event, was_distraction=True)
        self.classifications.update_from_behavior(event.url, False, event.context)
