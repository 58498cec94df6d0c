"""
Attention Engine — the one object hosts talk to.

Builds every component around a shared repository and clock, serializes
every entry point behind a re-entrant lock, and wires streak events into the
reward service.
"""

from __future__ import annotations

import logging
import random
import threading
from datetime import datetime
from functools import wraps
from typing import Callable, List, Optional

from attention_rescue.data.models import (
    ActivityEvent,
    AdaptationStrategy,
    BrowsingContext,
    DistractionAssessment,
    HistoryEntry,
    RewardEvent,
    StreakEvent,
    StreakRecord,
    UserProgress,
)
from attention_rescue.data.repository import Repository
from attention_rescue.ml.pattern_matcher import PatternMatcher
from attention_rescue.ml.predictor import DistractionPredictor
from attention_rescue.ml.rule_classifier import RuleBasedClassifier
from attention_rescue.ml.scorer import OnlineScorer
from attention_rescue.services.activity_detector import ActivityDetector
from attention_rescue.services.activity_service import ActivityService
from attention_rescue.services.challenge_service import ChallengeService
from attention_rescue.services.classification_service import ClassificationService
from attention_rescue.services.dismissal_service import DismissalService
from attention_rescue.services.feedback_service import FeedbackEvent, FeedbackService, FeedbackType
from attention_rescue.services.reward_service import RewardService
from attention_rescue.services.settings_service import SettingsService
from attention_rescue.services.streak_service import StreakService

logger = logging.getLogger(__name__)


def serialized(method):
    """Run the method while holding the engine lock."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class AttentionEngine:
    """
    Facade over the decision core and the gamification state machines.

    Streak wiring:
      milestone event             -> milestone points
      personal-best increment     -> personal-best points
      streak reaches streak_goal  -> daily-goal points, once per day
    """

    def __init__(
        self,
        repo: Repository,
        clock: Callable[[], datetime] = datetime.now,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.repo = repo
        self._clock = clock
        self._lock = threading.RLock()

        self.settings = SettingsService(repo, clock)
        self.detector = ActivityDetector(clock)
        self.scorer = OnlineScorer(repo, clock)
        self.rules = RuleBasedClassifier(clock)
        self.classifications = ClassificationService(repo, self.scorer, self.rules, clock)
        self.patterns = PatternMatcher(repo, clock)
        self.challenges = ChallengeService(rng, clock)
        self.dismissals = DismissalService(repo, clock)
        self.predictor = DistractionPredictor(
            scorer=self.scorer,
            resolver=self.classifications,
            patterns=self.patterns,
            settings=self.settings,
            detector=self.detector,
            challenges=self.challenges,
            dismissals=self.dismissals,
            clock=clock,
        )
        self.streak = StreakService(repo, clock)
        self.rewards = RewardService(repo, clock)
        self.feedback = FeedbackService(repo, self.scorer, self.classifications)
        self.activity = ActivityService(repo, self.evaluate, self._is_productive, clock)
        self.activity.on_visit_closed = self._on_visit_closed

        self.streak.subscribe(self._on_streak_event)

    def now(self) -> datetime:
        return self._clock()

    # ── Decision ────────────────────────────────────────────────────────────

    @serialized
    def evaluate(self, context: BrowsingContext) -> DistractionAssessment:
        return self.predictor.evaluate(context)

    @serialized
    def submit_activity(self, event: ActivityEvent) -> Optional[DistractionAssessment]:
        return self.activity.submit(event)

    @serialized
    def record_intervention(self, url: str) -> None:
        self.predictor.record_intervention(url)

    @serialized
    def record_dismissal(self, url: str, context: Optional[BrowsingContext] = None) -> AdaptationStrategy:
        strategy = self.predictor.record_dismissal(url)
        self.streak.record_distraction()
        if context is not None:
            self.feedback.process(FeedbackEvent(
                FeedbackType.INTERVENTION_DISMISSED, url, self._clock(), context,
                {"dismissal_count": self.dismissals.get_dismissal_count(url)},
            ))
        if self.dismissals.is_high_dismissal_rate():
            suggestions = self.get_whitelist_suggestions()
            if suggestions:
                logger.info("High dismissal rate; whitelist candidates: %s", ", ".join(suggestions))
        return strategy

    @serialized
    def record_completion(self, url: str, context: Optional[BrowsingContext] = None) -> int:
        """Challenge completed on url. Returns intervention points awarded."""
        self.predictor.record_completion(url)
        self.activity.mark_intervention_completed(url)
        self.streak.record_productive_activity()
        points = self.rewards.award_intervention()
        if context is not None:
            self.feedback.process(FeedbackEvent(
                FeedbackType.INTERVENTION_COMPLETED, url, self._clock(), context,
            ))
        return points

    @serialized
    def get_whitelist_suggestions(self) -> List[str]:
        return self.dismissals.suggest_whitelist_additions(self.settings.get().whitelist)

    # ── Streak ──────────────────────────────────────────────────────────────

    @serialized
    def record_productive_activity(self) -> List[StreakEvent]:
        return self.streak.record_productive_activity()

    @serialized
    def record_distraction(self) -> List[StreakEvent]:
        return self.streak.record_distraction()

    @serialized
    def check_inactivity(self) -> List[StreakEvent]:
        return self.streak.check_inactivity()

    @serialized
    def get_streak(self) -> StreakRecord:
        return self.streak.get_streak()

    def subscribe_streak(self, fn: Callable[[StreakEvent], None]) -> Callable[[], None]:
        return self.streak.subscribe(fn)

    # ── Rewards ─────────────────────────────────────────────────────────────

    @serialized
    def award_intervention(self) -> int:
        return self.rewards.award_intervention()

    @serialized
    def award_session(self, duration_minutes: float) -> int:
        return self.rewards.award_productive_session(
            duration_minutes, self.streak.get_streak().multiplier
        )

    @serialized
    def award_milestone(self, streak_value: int) -> int:
        return self.rewards.award_streak_milestone(streak_value)

    @serialized
    def award_personal_best(self) -> int:
        return self.rewards.award_personal_best()

    @serialized
    def award_daily_goal(self) -> int:
        return self.rewards.award_daily_goal(self._clock().date())

    @serialized
    def get_progress(self) -> UserProgress:
        return self.rewards.get_progress()

    def subscribe_rewards(self, fn: Callable[[RewardEvent], None]) -> Callable[[], None]:
        return self.rewards.subscribe(fn)

    # ── Learning / housekeeping ─────────────────────────────────────────────

    @serialized
    def process_feedback(self, event: FeedbackEvent) -> None:
        self.feedback.process(event)

    @serialized
    def refresh_patterns(self) -> bool:
        return self.patterns.update_if_needed()

    @serialized
    def prune_history(self, cutoff: datetime) -> int:
        """Drop browsing history that started before cutoff."""
        return self.repo.prune_history(cutoff)

    @serialized
    def flush(self) -> bool:
        """Retry pending writes. True when everything is persisted."""
        self.activity.drain()
        streak_ok = self.streak.flush()
        rewards_ok = self.rewards.flush()
        return streak_ok and rewards_ok and self.activity.pending() == 0

    @serialized
    def shutdown(self) -> None:
        self.activity.close_current_visit()
        self.flush()
        logger.info("Engine shut down")

    # ── Wiring ──────────────────────────────────────────────────────────────

    def _on_streak_event(self, event: StreakEvent) -> None:
        if event.type == "milestone":
            self.rewards.award_streak_milestone(event.streak_value)
        elif event.is_personal_best:
            self.rewards.award_personal_best()

        if event.type in ("start", "increment"):
            today = event.timestamp.date()
            goal = self.settings.get().streak_goal
            if event.streak_value >= goal and not self.rewards.daily_goal_met(today):
                self.rewards.award_daily_goal(today)

    def _on_visit_closed(self, visit: HistoryEntry) -> None:
        if not visit.was_productive:
            return
        self.streak.record_productive_activity()
        self.rewards.award_productive_session(
            visit.duration_minutes, self.streak.get_streak().multiplier
        )

    def _is_productive(self, url: str, context: BrowsingContext) -> bool:
        return self.classifications.resolve(url, context).category == "productive"


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Composition root. main.py builds one AttentionEngine and never touches
#   the individual services directly.
#
# Key design decisions:
#   - Explicit instances, not module singletons: every test builds its own
#     engine on an in-memory database with a fake clock.
#   - One RLock around every public method. Re-entrant because a streak
#     event fired inside record_completion() calls back into the reward
#     service on the same thread.
#   - Streak -> reward wiring is a subscription, so the streak service
#     doesn't import the reward service.
#
# Data flow:
#   ActivityEvent -> ActivityService -> evaluate() -> DistractionAssessment
#   completion -> predictor + streak + rewards + feedback
#   dismissal  -> predictor backoff + streak break + feedback
#
# Interviewer-friendly talking points:
#   1. Fail-open lives in the predictor; everything else may raise
#      ValidationError so bad input is rejected before any state changes.
#   2. The personal-best award fires on every increment that beats the
#      previous longest, so a long new record earns points each step.
