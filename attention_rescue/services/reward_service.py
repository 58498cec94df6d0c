"""
Reward Service — points, levels and achievements.

Point table:
    intervention completed      10
    productive session          5 / 15 / 30 / 60 for >= 5 / 15 / 30 / 60 min,
                                times the streak multiplier (floored)
    streak milestone            50
    personal best               100
    daily goal met              25
"""

from __future__ import annotations

import copy
import logging
import math
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

import numpy as np

from attention_rescue.data.models import Achievement, RewardEvent, UserProgress
from attention_rescue.data.repository import KEY_PROGRESS, Repository
from attention_rescue.errors import StorageError
from attention_rescue.services.event_bus import EventBus

logger = logging.getLogger(__name__)

INTERVENTION_POINTS = 10
SESSION_TIERS = [(60, 60), (30, 30), (15, 15), (5, 5)]   # (min minutes, points)
MILESTONE_POINTS = 50
PERSONAL_BEST_POINTS = 100
DAILY_GOAL_POINTS = 25

LEVEL_THRESHOLDS = np.array([0, 100, 250, 500, 1000, 2000, 4000, 8000, 15000, 30000])
MAX_LEVEL = len(LEVEL_THRESHOLDS)

INTERVENTION_ACHIEVEMENTS = {1: "first_intervention", 10: "interventions_10",
                             50: "interventions_50", 100: "interventions_100"}
STREAK_ACHIEVEMENTS = {5: "streak_5", 10: "streak_10", 25: "streak_25",
                       50: "streak_50", 100: "streak_100"}
LEVEL_ACHIEVEMENTS = {5: "level_5", 10: "level_10"}
PRODUCTIVE_MINUTES_GOAL = 1000
WEEK_STREAK_DAYS = 7

ACHIEVEMENTS: List[Achievement] = [
    Achievement("first_intervention", "First Step", "Complete your first intervention", "🎯"),
    Achievement("streak_5", "Getting Started", "Reach a streak of 5", "🔥"),
    Achievement("streak_10", "Building Momentum", "Reach a streak of 10", "💪"),
    Achievement("streak_25", "Focused Mind", "Reach a streak of 25", "🧠"),
    Achievement("streak_50", "Deep Work", "Reach a streak of 50", "⚡"),
    Achievement("streak_100", "Flow State", "Reach a streak of 100", "🌊"),
    Achievement("level_5", "Rising Star", "Reach level 5", "⭐"),
    Achievement("level_10", "Focus Master", "Reach level 10", "👑"),
    Achievement("interventions_10", "Committed", "Complete 10 interventions", "✅"),
    Achievement("interventions_50", "Dedicated", "Complete 50 interventions", "🎖️"),
    Achievement("interventions_100", "Unstoppable", "Complete 100 interventions", "🏆"),
    Achievement("week_streak", "Week Warrior", "Meet your daily goal 7 days in a row", "📅"),
    Achievement("productive_1000", "Productivity Pro", "Accumulate 1000 productive minutes", "⏱️"),
]
_CATALOG = {a.id: a for a in ACHIEVEMENTS}


def level_for(total_points: int) -> int:
    """Highest level whose threshold is <= total_points (1-10)."""
    return max(1, int(np.searchsorted(LEVEL_THRESHOLDS, total_points, side="right")))


def points_to_next_level(total_points: int) -> int:
    level = level_for(total_points)
    if level >= MAX_LEVEL:
        return 0
    return int(LEVEL_THRESHOLDS[level]) - total_points


def session_points(duration_minutes: float, multiplier: float = 1.0) -> int:
    base = next((pts for minimum, pts in SESSION_TIERS if duration_minutes >= minimum), 0)
    return math.floor(base * multiplier)


class RewardService:
    """Single owner of UserProgress. Every award is persisted, then published."""

    def __init__(
        self,
        repo: Optional[Repository] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self._clock = clock
        self.events: EventBus[RewardEvent] = EventBus("rewards")
        self._goal_days: List[date] = []
        self._dirty = False
        self._progress = self._load()

    def subscribe(self, fn: Callable[[RewardEvent], None]) -> Callable[[], None]:
        return self.events.subscribe(fn)

    # ── Awards ──────────────────────────────────────────────────────────────

    def award_intervention(self) -> int:
        self._progress.total_interventions += 1
        self._add_points(INTERVENTION_POINTS)
        achievement = INTERVENTION_ACHIEVEMENTS.get(self._progress.total_interventions)
        if achievement:
            self.unlock_achievement(achievement)
        self._save()
        return INTERVENTION_POINTS

    def award_productive_session(self, duration_minutes: float, multiplier: float = 1.0) -> int:
        points = session_points(duration_minutes, multiplier)
        if points <= 0:
            return 0
        self._progress.total_productive_minutes += duration_minutes
        self._add_points(points)
        if self._progress.total_productive_minutes >= PRODUCTIVE_MINUTES_GOAL:
            self.unlock_achievement("productive_1000")
        self._save()
        logger.info("Awarded %d points for %.0f min productive session", points, duration_minutes)
        return points

    def award_streak_milestone(self, streak_value: int) -> int:
        self._add_points(MILESTONE_POINTS)
        achievement = STREAK_ACHIEVEMENTS.get(streak_value)
        if achievement:
            self.unlock_achievement(achievement)
        self._save()
        return MILESTONE_POINTS

    def award_personal_best(self) -> int:
        self._add_points(PERSONAL_BEST_POINTS)
        self._save()
        return PERSONAL_BEST_POINTS

    def award_daily_goal(self, day: Optional[date] = None) -> int:
        day = day or self._clock().date()
        if day not in self._goal_days:
            self._goal_days = sorted(self._goal_days + [day])[-WEEK_STREAK_DAYS:]
        self._add_points(DAILY_GOAL_POINTS)
        if self._has_week_streak():
            self.unlock_achievement("week_streak")
        self._save()
        return DAILY_GOAL_POINTS

    def daily_goal_met(self, day: date) -> bool:
        return day in self._goal_days

    # ── Achievements ────────────────────────────────────────────────────────

    def unlock_achievement(self, achievement_id: str) -> bool:
        """Unlock once. Returns False if unknown or already unlocked."""
        if self._progress.has_achievement(achievement_id):
            return False
        template = _CATALOG.get(achievement_id)
        if template is None:
            logger.warning("Unknown achievement id: %s", achievement_id)
            return False

        unlocked = copy.copy(template)
        unlocked.unlocked_at = self._clock()
        self._progress.achievements.append(unlocked)
        self._save()
        self.events.emit(RewardEvent("achievement", unlocked.unlocked_at,
                                     level=self._progress.level, achievement=unlocked))
        logger.info("Achievement unlocked: %s", unlocked.title)
        return True

    def get_all_achievements(self) -> List[Achievement]:
        return [copy.copy(a) for a in ACHIEVEMENTS]

    def get_unlocked_achievements(self) -> List[Achievement]:
        return [copy.copy(a) for a in self._progress.achievements]

    def get_locked_achievements(self) -> List[Achievement]:
        return [copy.copy(a) for a in ACHIEVEMENTS if not self._progress.has_achievement(a.id)]

    # ── Progress ────────────────────────────────────────────────────────────

    def get_progress(self) -> UserProgress:
        return copy.deepcopy(self._progress)

    def reset(self) -> None:
        self._progress = UserProgress()
        self._goal_days = []
        self._save()
        logger.info("Progress reset")

    def flush(self) -> bool:
        if self._dirty:
            self._save()
        return not self._dirty

    # ── Internal ────────────────────────────────────────────────────────────

    def _add_points(self, points: int) -> None:
        p = self._progress
        old_level = p.level
        p.total_points += points
        p.level = max(old_level, level_for(p.total_points))
        p.points_to_next_level = points_to_next_level(p.total_points)

        now = self._clock()
        self.events.emit(RewardEvent("points", now, points=points, level=p.level))

        if p.level > old_level:
            logger.info("Level up! %d -> %d", old_level, p.level)
            self.events.emit(RewardEvent("level_up", now, points=points, level=p.level))
            for crossed in range(old_level + 1, p.level + 1):
                if crossed in LEVEL_ACHIEVEMENTS:
                    self.unlock_achievement(LEVEL_ACHIEVEMENTS[crossed])

    def _has_week_streak(self) -> bool:
        if len(self._goal_days) < WEEK_STREAK_DAYS:
            return False
        last = self._goal_days[-WEEK_STREAK_DAYS:]
        return last[-1] - last[0] == timedelta(days=WEEK_STREAK_DAYS - 1)

    def _load(self) -> UserProgress:
        if self.repo is None:
            return UserProgress()
        try:
            stored = self.repo.get(KEY_PROGRESS)
        except StorageError as e:
            logger.warning("Could not load progress, starting fresh: %s", e)
            return UserProgress()
        if not stored:
            return UserProgress()
        self._goal_days = [date.fromisoformat(d) for d in stored.get("goal_days", [])]
        return UserProgress.from_dict(stored)

    def _save(self) -> None:
        if self.repo is None:
            return
        data = self._progress.to_dict()
        data["goal_days"] = [d.isoformat() for d in self._goal_days]
        try:
            self.repo.set(KEY_PROGRESS, data)
            self._dirty = False
        except StorageError as e:
            self._dirty = True
            logger.warning("Could not persist progress, will retry: %s", e)
