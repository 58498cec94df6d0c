"""
Input validation for payloads that cross the engine boundary.

Each validator collects every problem it finds and raises one
ValidationError, before any state is touched.
"""

from __future__ import annotations

from typing import List

from attention_rescue.errors import ValidationError

from .models import (
    ACTIVITY_EVENT_TYPES,
    CHALLENGE_TYPES,
    CLASSIFICATION_CATEGORIES,
    CLASSIFICATION_SOURCES,
    INTERVENTION_FREQUENCIES,
    ActivityEvent,
    BrowsingContext,
    SiteClassification,
    TimeRange,
    UserSettings,
)

MAX_RECENT_HISTORY = 5


def _is_hour(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 23


def context_errors(context: BrowsingContext) -> List[str]:
    errors: List[str] = []
    if not isinstance(context.url, str) or not context.url.strip():
        errors.append("url must be a non-empty string")
    if not _is_hour(context.hour):
        errors.append("hour must be an integer 0-23")
    if not isinstance(context.weekday, int) or not 0 <= context.weekday <= 6:
        errors.append("weekday must be an integer 0-6")
    if not isinstance(context.recent_history, list):
        errors.append("recent_history must be a list")
    else:
        if len(context.recent_history) > MAX_RECENT_HISTORY:
            errors.append(f"recent_history holds at most {MAX_RECENT_HISTORY} URLs")
        if any(not isinstance(u, str) for u in context.recent_history):
            errors.append("recent_history entries must be strings")
    if not isinstance(context.session_minutes, (int, float)) or context.session_minutes < 0:
        errors.append("session_minutes must be >= 0")
    if (not isinstance(context.idle_productive_minutes, (int, float))
            or context.idle_productive_minutes < 0):
        errors.append("idle_productive_minutes must be >= 0")
    return errors


def validate_context(context: BrowsingContext) -> None:
    errors = context_errors(context)
    if errors:
        raise ValidationError(errors)


def validate_time_range(time_range: TimeRange) -> None:
    if not _is_hour(time_range.start) or not _is_hour(time_range.end):
        raise ValidationError(["quiet hours must be between 0 and 23"])


def validate_settings(settings: UserSettings) -> None:
    errors: List[str] = []
    if settings.intervention_frequency not in INTERVENTION_FREQUENCIES:
        errors.append(
            f"intervention_frequency must be one of {', '.join(INTERVENTION_FREQUENCIES)}"
        )
    for r in settings.quiet_hours:
        if not _is_hour(r.start) or not _is_hour(r.end):
            errors.append(f"invalid quiet hours {r.start}-{r.end}")
    if any(not isinstance(w, str) or not w for w in settings.whitelist):
        errors.append("whitelist entries must be non-empty strings")
    if not settings.preferred_challenges:
        errors.append("at least one challenge type must be preferred")
    unknown = [t for t in settings.preferred_challenges if t not in CHALLENGE_TYPES]
    if unknown:
        errors.append(f"unknown challenge types: {', '.join(unknown)}")
    if not isinstance(settings.learning_mode, bool):
        errors.append("learning_mode must be a boolean")
    if (not isinstance(settings.streak_goal, int) or isinstance(settings.streak_goal, bool)
            or settings.streak_goal <= 0):
        errors.append("streak_goal must be a positive integer")
    if errors:
        raise ValidationError(errors)


def validate_classification(classification: SiteClassification) -> None:
    errors: List[str] = []
    if not classification.url:
        errors.append("url is required")
    if classification.category not in CLASSIFICATION_CATEGORIES:
        errors.append(f"unknown category '{classification.category}'")
    if classification.source not in CLASSIFICATION_SOURCES:
        errors.append(f"unknown source '{classification.source}'")
    if not 0.0 <= classification.confidence <= 1.0:
        errors.append("confidence must be within [0, 1]")
    if classification.category == "custom" and not classification.custom_label:
        errors.append("custom category requires a custom label")
    if errors:
        raise ValidationError(errors)


def validate_activity_event(event: ActivityEvent) -> None:
    errors: List[str] = []
    if not isinstance(event.url, str) or not event.url.strip():
        errors.append("url must be a non-empty string")
    if event.event_type not in ACTIVITY_EVENT_TYPES:
        errors.append(f"unknown event type '{event.event_type}'")
    if event.timestamp is None:
        errors.append("timestamp is required")
    if event.duration is not None and event.duration < 0:
        errors.append("duration must be >= 0")
    errors.extend(context_errors(event.context))
    if errors:
        raise ValidationError(errors)
