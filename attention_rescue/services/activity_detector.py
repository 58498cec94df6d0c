"""
Activity Detector — decides when interventions must stay quiet: manual pause,
timed pause, or a video call / presentation in the current tab.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_PAUSE_MINUTES = 60

VIDEO_CALL_PATTERNS = [
    "zoom.us", "meet.google.com", "teams.microsoft.com", "webex.com",
    "whereby.com", "jitsi", "discord.com/channels", "slack.com/call",
    "skype.com", "facetime", "bluejeans.com", "gotomeeting.com",
    "ringcentral.com",
]
PRESENTATION_PATTERNS = [
    "slides.google.com/present", "powerpoint.live.com/present",
    "prezi.com/present", "canva.com/design", "/present", "/presentation",
    "/slideshow",
]


class ActivityDetector:
    """Pause state plus URL pattern checks. All checks are substring, case-insensitive."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now) -> None:
        self._clock = clock
        self.paused_until: Optional[datetime] = None
        self.manually_paused = False
        self.video_call_patterns: List[str] = list(VIDEO_CALL_PATTERNS)
        self.presentation_patterns: List[str] = list(PRESENTATION_PATTERNS)

    # ── URL detection ───────────────────────────────────────────────────────

    def is_video_call(self, url: str) -> bool:
        lower = url.lower()
        return any(p.lower() in lower for p in self.video_call_patterns)

    def is_presentation(self, url: str) -> bool:
        lower = url.lower()
        return any(p.lower() in lower for p in self.presentation_patterns)

    def detect_activity_type(self, url: str) -> str:
        if self.is_video_call(url):
            return "video-call"
        if self.is_presentation(url):
            return "presentation"
        return "normal"

    def add_video_call_pattern(self, pattern: str) -> None:
        if pattern not in self.video_call_patterns:
            self.video_call_patterns.append(pattern)
            logger.info("Added video call pattern: %s", pattern)

    def add_presentation_pattern(self, pattern: str) -> None:
        if pattern not in self.presentation_patterns:
            self.presentation_patterns.append(pattern)
            logger.info("Added presentation pattern: %s", pattern)

    # ── Pause state ─────────────────────────────────────────────────────────

    def pause(self, minutes: float = DEFAULT_PAUSE_MINUTES) -> None:
        self.paused_until = self._clock() + timedelta(minutes=minutes)
        logger.info("Interventions paused for %.0f minutes", minutes)

    def resume(self) -> None:
        self.paused_until = None
        self.manually_paused = False
        logger.info("Interventions resumed")

    def toggle_manual_pause(self) -> bool:
        self.manually_paused = not self.manually_paused
        logger.info("Interventions manually %s", "paused" if self.manually_paused else "resumed")
        return self.manually_paused

    def is_paused(self) -> bool:
        if self.manually_paused:
            return True
        return self.paused_until is not None and self._clock() < self.paused_until

    def remaining_minutes(self) -> int:
        if self.paused_until is None:
            return 0
        seconds = (self.paused_until - self._clock()).total_seconds()
        return max(0, math.ceil(seconds / 60))

    def should_pause(self, url: str) -> bool:
        return self.is_paused() or self.is_video_call(url) or self.is_presentation(url)

    def pause_status(self, url: Optional[str] = None) -> str:
        """Human-readable reason interventions are (or aren't) paused."""
        if self.manually_paused:
            return "Manually paused"
        if self.is_paused():
            return f"Paused for {self.remaining_minutes()} more minutes"
        if url and self.is_video_call(url):
            return "Video call in progress"
        if url and self.is_presentation(url):
            return "Presentation in progress"
        return "Not paused"

    def get_statistics(self) -> dict:
        return {
            "is_paused": self.is_paused(),
            "pause_reason": self.pause_status(),
            "video_call_patterns": len(self.video_call_patterns),
            "presentation_patterns": len(self.presentation_patterns),
        }
