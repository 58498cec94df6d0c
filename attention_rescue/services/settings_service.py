"""
Settings Service — owns UserSettings: load/save through the repository,
quiet-hour and whitelist checks, and change notification.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Callable, List, Optional

from attention_rescue.data.models import (
    INTERVENTION_FREQUENCIES,
    TimeRange,
    UserSettings,
)
from attention_rescue.data.repository import KEY_SETTINGS, Repository
from attention_rescue.data.validators import validate_settings, validate_time_range
from attention_rescue.errors import StorageError, ValidationError
from attention_rescue.ml.features import extract_domain
from attention_rescue.services.event_bus import EventBus

logger = logging.getLogger(__name__)

# Higher rank = more interventions
FREQUENCY_RANK = {"aggressive": 3, "moderate": 2, "minimal": 1}


def is_hour_in_range(hour: int, time_range: TimeRange) -> bool:
    """Inclusive at both ends; ranges with end < start wrap past midnight."""
    if time_range.end >= time_range.start:
        return time_range.start <= hour <= time_range.end
    return hour >= time_range.start or hour <= time_range.end


def _split(time_range: TimeRange) -> List[TimeRange]:
    if time_range.end < time_range.start:
        return [TimeRange(time_range.start, 23), TimeRange(0, time_range.end)]
    return [time_range]


def time_ranges_overlap(a: TimeRange, b: TimeRange) -> bool:
    return any(
        r1.start <= r2.end and r2.start <= r1.end
        for r1 in _split(a)
        for r2 in _split(b)
    )


class SettingsService:
    """Single owner of the user's settings. Every mutation is persisted and published."""

    def __init__(
        self,
        repo: Optional[Repository] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self._clock = clock
        self.changes: EventBus[UserSettings] = EventBus("settings")
        self._settings = self._load()

    # ── Read ────────────────────────────────────────────────────────────────

    def get(self) -> UserSettings:
        """A copy of the current settings; mutate through update()."""
        return copy.deepcopy(self._settings)

    def is_in_quiet_hours(self, hour: Optional[int] = None) -> bool:
        if hour is None:
            hour = self._clock().hour
        return any(is_hour_in_range(hour, r) for r in self._settings.quiet_hours)

    def is_whitelisted(self, url: str) -> bool:
        domain = extract_domain(url)
        if not domain:
            return False
        return any(w in domain or domain in w for w in self._settings.whitelist)

    # ── Write ───────────────────────────────────────────────────────────────

    def update(self, **changes) -> UserSettings:
        """Apply field changes. Raises ValidationError without touching state."""
        unknown = [k for k in changes if not hasattr(self._settings, k)]
        if unknown:
            raise ValidationError([f"unknown setting '{k}'" for k in unknown])

        candidate = copy.deepcopy(self._settings)
        for key, value in changes.items():
            setattr(candidate, key, value)
        validate_settings(candidate)

        self._settings = candidate
        self._save()
        self.changes.emit(self.get())
        logger.info("Settings updated: %s", ", ".join(sorted(changes)))
        return self.get()

    def set_intervention_frequency(self, frequency: str) -> None:
        self.update(intervention_frequency=frequency)

    def loosen_frequency(self, target: str) -> bool:
        """Move toward fewer interventions, never more. Returns True if changed."""
        if target not in INTERVENTION_FREQUENCIES:
            raise ValidationError([f"unknown intervention frequency '{target}'"])
        current = self._settings.intervention_frequency
        if FREQUENCY_RANK[target] >= FREQUENCY_RANK[current]:
            return False
        self.update(intervention_frequency=target)
        logger.info("Intervention frequency loosened: %s -> %s", current, target)
        return True

    def add_quiet_hours(self, time_range: TimeRange) -> None:
        validate_time_range(time_range)
        if any(time_ranges_overlap(r, time_range) for r in self._settings.quiet_hours):
            raise ValidationError(["quiet hours overlap with existing range"])
        self.update(quiet_hours=self._settings.quiet_hours + [time_range])

    def remove_quiet_hours(self, index: int) -> None:
        if not 0 <= index < len(self._settings.quiet_hours):
            raise ValidationError(["invalid quiet hours index"])
        hours = [r for i, r in enumerate(self._settings.quiet_hours) if i != index]
        self.update(quiet_hours=hours)

    def clear_quiet_hours(self) -> None:
        self.update(quiet_hours=[])

    def add_to_whitelist(self, url: str) -> None:
        domain = extract_domain(url)
        if not domain:
            raise ValidationError([f"invalid URL '{url}'"])
        if domain in self._settings.whitelist:
            logger.debug("%s is already whitelisted", domain)
            return
        self.update(whitelist=self._settings.whitelist + [domain])

    def remove_from_whitelist(self, domain: str) -> None:
        self.update(whitelist=[w for w in self._settings.whitelist if w != domain])

    def set_preferred_challenges(self, challenges: List[str]) -> None:
        self.update(preferred_challenges=list(challenges))

    def set_learning_mode(self, enabled: bool) -> None:
        self.update(learning_mode=enabled)

    def set_notifications_enabled(self, enabled: bool) -> None:
        self.update(notifications_enabled=enabled)

    def set_streak_goal(self, goal: int) -> None:
        self.update(streak_goal=goal)

    def reset_to_defaults(self) -> UserSettings:
        self._settings = UserSettings()
        self._save()
        self.changes.emit(self.get())
        logger.info("Settings reset to defaults")
        return self.get()

    # ── Persistence ─────────────────────────────────────────────────────────

    def _load(self) -> UserSettings:
        if self.repo is None:
            return UserSettings()
        try:
            stored = self.repo.get(KEY_SETTINGS)
        except StorageError as e:
            logger.warning("Could not load settings, using defaults: %s", e)
            return UserSettings()
        if not stored:
            return UserSettings()
        try:
            settings = UserSettings.from_dict(stored)
            validate_settings(settings)
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("Stored settings are invalid, using defaults: %s", e)
            return UserSettings()
        return settings

    def _save(self) -> None:
        if self.repo is None:
            return
        try:
            self.repo.set(KEY_SETTINGS, self._settings.to_dict())
        except StorageError as e:
            logger.warning("Could not persist settings: %s", e)
