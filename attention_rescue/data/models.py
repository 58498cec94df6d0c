"""
Data models for Attention Rescue.

These are plain dataclasses shared by every layer. They decouple the engine
from raw SQL rows and JSON blobs so every component speaks the same "language."
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

# Closed vocabularies ---------------------------------------------------------

SITE_CATEGORIES = ("social-media", "video-streaming", "news", "productivity", "other")
NAVIGATION_PATTERNS = ("single-page", "same-site", "domain-hopping", "mixed-browsing")
CLASSIFICATION_CATEGORIES = ("productive", "distraction", "neutral", "custom")
CLASSIFICATION_SOURCES = ("user", "ai", "default")
CHALLENGE_TYPES = ("reflection", "intention", "quick-task", "breathing")
INTERVENTION_FREQUENCIES = ("aggressive", "moderate", "minimal")
ACTIVITY_EVENT_TYPES = ("navigation", "focus", "blur", "scroll", "click")

_parse_dt = lambda s: datetime.fromisoformat(s) if s else None
_fmt_dt = lambda d: d.isoformat() if d else None


@dataclass
class BrowsingContext:
    """Snapshot of what the user is doing right now (supplied by activity capture)."""
    url: str = ""
    title: str = ""
    timestamp: Optional[datetime] = None
    hour: int = 0                 # 0-23
    weekday: int = 0              # 0-6, Sunday = 0
    recent_history: List[str] = field(default_factory=list)  # most-recent-last, <= 5
    session_minutes: float = 0.0
    idle_productive_minutes: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = _fmt_dt(self.timestamp)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "BrowsingContext":
        return cls(
            url=d.get("url", ""),
            title=d.get("title", ""),
            timestamp=_parse_dt(d.get("timestamp")),
            hour=d.get("hour", 0),
            weekday=d.get("weekday", 0),
            recent_history=list(d.get("recent_history") or []),
            session_minutes=d.get("session_minutes", 0.0),
            idle_productive_minutes=d.get("idle_productive_minutes", 0.0),
        )


def build_context(
    url: str,
    title: str,
    timestamp: datetime,
    recent_history: List[str],
    session_start: datetime,
    last_productive: datetime,
) -> BrowsingContext:
    """Build a context from raw timestamps (weekday uses Sunday = 0)."""
    return BrowsingContext(
        url=url,
        title=title,
        timestamp=timestamp,
        hour=timestamp.hour,
        weekday=(timestamp.weekday() + 1) % 7,
        recent_history=list(recent_history)[-5:],
        session_minutes=max(0, int((timestamp - session_start).total_seconds() // 60)),
        idle_productive_minutes=max(0, int((timestamp - last_productive).total_seconds() // 60)),
    )


@dataclass(frozen=True)
class FeatureTuple:
    """Fixed-shape summary of a context used for scoring. Never persisted."""
    hour: int
    weekday: int
    category: str
    navigation_pattern: str
    session_minutes: float
    idle_productive_minutes: float


@dataclass
class FeedbackItem:
    """One discrete learning signal for the online scorer."""
    url: str
    was_distraction: bool
    timestamp: datetime
    context: BrowsingContext


@dataclass
class Prediction:
    is_distraction: bool
    confidence: float
    features: FeatureTuple


@dataclass
class SiteClassification:
    """How a site (URL or domain) is classified, and by whom."""
    url: str = ""
    category: str = "neutral"          # productive | distraction | neutral | custom
    confidence: float = 0.5
    source: str = "default"            # user | ai | default
    custom_label: Optional[str] = None
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["last_updated"] = _fmt_dt(self.last_updated)
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SiteClassification":
        return cls(
            url=d.get("url", ""),
            category=d.get("category", "neutral"),
            confidence=d.get("confidence", 0.5),
            source=d.get("source", "default"),
            custom_label=d.get("custom_label"),
            last_updated=_parse_dt(d.get("last_updated")),
        )


@dataclass
class HistoryEntry:
    """One completed page visit. Source data for the pattern matcher."""
    id: Optional[int] = None
    url: str = ""
    title: str = ""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: float = 0.0
    category: str = "other"
    navigation_pattern: str = "unknown"
    was_productive: bool = False
    intervention_triggered: bool = False
    intervention_completed: bool = False


@dataclass
class HistoricalPatternBucket:
    hour: int
    weekday: int
    category: str
    navigation_pattern: str
    was_distraction: bool
    frequency: int = 1


@dataclass
class SimilarityScore:
    overall: float = 0.0
    temporal: float = 0.0
    categorical: float = 0.0
    navigational: float = 0.0
    matching_patterns: List[str] = field(default_factory=list)


@dataclass
class DismissalRecord:
    url: str
    timestamp: datetime
    consecutive_count: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "timestamp": _fmt_dt(self.timestamp),
                "consecutive_count": self.consecutive_count}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DismissalRecord":
        return cls(url=d["url"], timestamp=_parse_dt(d["timestamp"]),
                   consecutive_count=d.get("consecutive_count", 1))


@dataclass(frozen=True)
class AdaptationStrategy:
    intervention_frequency: str = "moderate"
    cooldown_multiplier: float = 1.0
    difficulty_adjustment: int = 0
    should_adjust_settings: bool = False


@dataclass
class MicroChallenge:
    id: str
    type: str                     # reflection | intention | quick-task | breathing
    prompt: str
    timeout_seconds: int
    difficulty: int               # 1-5
    options: Optional[List[str]] = None


@dataclass
class DistractionAssessment:
    is_distraction: bool
    confidence: float
    reason: str
    suggested_challenge: Optional[MicroChallenge] = None
    matching_patterns: List[str] = field(default_factory=list)


@dataclass
class StreakRecord:
    current: int = 0
    longest: int = 0
    last_update: Optional[datetime] = None
    multiplier: float = 1.0

    def to_dict(self) -> Dict[str, Any]:
        return {"current": self.current, "longest": self.longest,
                "last_update": _fmt_dt(self.last_update),
                "multiplier": self.multiplier}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "StreakRecord":
        return cls(current=d.get("current", 0), longest=d.get("longest", 0),
                   last_update=_parse_dt(d.get("last_update")),
                   multiplier=d.get("multiplier", 1.0))


@dataclass(frozen=True)
class StreakEvent:
    """
    Published on every streak transition.

    type is one of: 'start', 'increment', 'break', 'milestone'
    """
    type: str
    timestamp: datetime
    streak_value: int
    is_personal_best: bool = False


@dataclass
class Achievement:
    id: str
    title: str
    description: str
    icon: str
    unlocked_at: Optional[datetime] = None


@dataclass
class UserProgress:
    level: int = 1
    total_points: int = 0
    points_to_next_level: int = 100
    achievements: List[Achievement] = field(default_factory=list)
    total_interventions: int = 0
    total_productive_minutes: float = 0.0

    def has_achievement(self, achievement_id: str) -> bool:
        return any(a.id == achievement_id for a in self.achievements)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "total_points": self.total_points,
            "points_to_next_level": self.points_to_next_level,
            "achievements": [
                {**asdict(a), "unlocked_at": _fmt_dt(a.unlocked_at)}
                for a in self.achievements
            ],
            "total_interventions": self.total_interventions,
            "total_productive_minutes": self.total_productive_minutes,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "UserProgress":
        achievements = [
            Achievement(id=a["id"], title=a.get("title", ""),
                        description=a.get("description", ""),
                        icon=a.get("icon", ""),
                        unlocked_at=_parse_dt(a.get("unlocked_at")))
            for a in d.get("achievements", [])
        ]
        return cls(
            level=d.get("level", 1),
            total_points=d.get("total_points", 0),
            points_to_next_level=d.get("points_to_next_level", 100),
            achievements=achievements,
            total_interventions=d.get("total_interventions", 0),
            total_productive_minutes=d.get("total_productive_minutes", 0.0),
        )


@dataclass(frozen=True)
class RewardEvent:
    """
    Published by the reward engine.

    type is one of: 'points', 'level_up', 'achievement'
    """
    type: str
    timestamp: datetime
    points: int = 0
    level: int = 1
    achievement: Optional[Achievement] = None


@dataclass
class TimeRange:
    start: int   # hour 0-23
    end: int     # hour 0-23, may be < start (wraps past midnight)


@dataclass
class UserSettings:
    intervention_frequency: str = "moderate"
    quiet_hours: List[TimeRange] = field(default_factory=list)
    whitelist: List[str] = field(default_factory=list)
    preferred_challenges: List[str] = field(default_factory=lambda: list(CHALLENGE_TYPES))
    learning_mode: bool = True
    notifications_enabled: bool = True
    streak_goal: int = 25

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "UserSettings":
        defaults = cls()
        return cls(
            intervention_frequency=d.get("intervention_frequency", defaults.intervention_frequency),
            quiet_hours=[TimeRange(r["start"], r["end"]) for r in d.get("quiet_hours", [])],
            whitelist=list(d.get("whitelist", [])),
            preferred_challenges=list(d.get("preferred_challenges", defaults.preferred_challenges)),
            learning_mode=d.get("learning_mode", defaults.learning_mode),
            notifications_enabled=d.get("notifications_enabled", defaults.notifications_enabled),
            streak_goal=d.get("streak_goal", defaults.streak_goal),
        )


@dataclass
class ActivityEvent:
    """
    A raw event from activity capture.

    event_type is one of: 'navigation', 'focus', 'blur', 'scroll', 'click'
    """
    url: str
    timestamp: datetime
    event_type: str
    context: BrowsingContext
    duration: Optional[float] = None


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Defines the "shape" of every object in the engine as Python dataclasses.
#   They carry data and know how to turn themselves into JSON-friendly dicts,
#   but have no business logic.
#
# Key classes and why they exist:
#   - BrowsingContext / FeatureTuple: what the user is doing now, and the
#     compact summary the scorer actually looks at.
#   - SiteClassification: one answer to "is this site productive?", tagged
#     with who said so (user beats AI beats defaults).
#   - HistoryEntry / HistoricalPatternBucket: raw visits and the hourly
#     aggregate the pattern matcher compares against.
#   - StreakRecord / UserProgress: the long-lived gamification state.
#   - StreakEvent / RewardEvent: immutable messages published to subscribers.
#
# Data flow:
#   Activity capture → BrowsingContext → engine → DistractionAssessment
#   Challenge outcome → StreakEvent → RewardEvent → UI collaborators
#
# Interviewer-friendly talking points:
#   1. frozen=True on events: listeners can't mutate a message another
#      listener is about to read.
#   2. to_dict/from_dict live next to the fields so adding a field is a
#      one-file change.
#   3. Sunday = 0 for weekday keeps the wire format identical to what the
#      browser side sends.
