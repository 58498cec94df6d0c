"""
Challenge Service — picks a micro-challenge (type, prompt, difficulty,
timeout) for a flagged distraction.
"""

from __future__ import annotations

import logging
import random
import string
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Sequence

from attention_rescue.data.models import CHALLENGE_TYPES, BrowsingContext, MicroChallenge
from attention_rescue.ml.features import categorize_url, is_late_night, is_work_hours

logger = logging.getLogger(__name__)

RECENT_PROMPT_MEMORY = 3
MAX_DIFFICULTY = 5
MIN_DIFFICULTY_LEVEL = 1.0
COMPLETION_STEP = 0.1
DISMISSAL_STEP = 0.2


@dataclass(frozen=True)
class ChallengeTemplate:
    prompts: Sequence[str]
    timeout_seconds: int
    difficulty: int
    options: Optional[Sequence[Sequence[str]]] = None


TEMPLATES: Dict[str, ChallengeTemplate] = {
    "reflection": ChallengeTemplate(
        prompts=(
            "What were you looking for when you opened this page?",
            "Is this helping you accomplish your goals right now?",
            "What task were you working on before this?",
            "Will this page help you be productive?",
            "Is this the best use of your time right now?",
        ),
        timeout_seconds=30,
        difficulty=1,
    ),
    "intention": ChallengeTemplate(
        prompts=(
            "Set a 10-minute focus goal before continuing",
            "What do you want to accomplish in the next 15 minutes?",
            "Name one task you'll complete before browsing further",
            "Set a timer for focused work before continuing",
            "What's your priority task right now?",
        ),
        options=(
            ("Work on current task", "Take a short break", "Switch to priority task"),
            ("Focus for 15 min", "Focus for 30 min", "Focus for 1 hour"),
            ("Complete one task", "Make progress on project", "Clear my inbox"),
        ),
        timeout_seconds=45,
        difficulty=2,
    ),
    "quick-task": ChallengeTemplate(
        prompts=(
            "Name 3 things you want to accomplish today",
            "List 2 tasks you can complete in the next hour",
            "What's the most important thing you should do right now?",
            "Name one thing you've accomplished so far today",
            "What will make today feel productive?",
        ),
        timeout_seconds=60,
        difficulty=2,
    ),
    "breathing": ChallengeTemplate(
        prompts=(
            "Take 3 deep breaths before proceeding",
            "Pause and take 5 slow breaths",
            "Close your eyes and breathe deeply for 10 seconds",
            "Take a moment to breathe and refocus",
            "Breathe in for 4, hold for 4, out for 4",
        ),
        timeout_seconds=20,
        difficulty=1,
    ),
}


class ChallengeService:
    """Stateless per call apart from the recent-prompt memory and the global difficulty level."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock
        self._recent: Dict[str, Deque[str]] = {
            t: deque(maxlen=RECENT_PROMPT_MEMORY) for t in CHALLENGE_TYPES
        }
        self.difficulty_level = MIN_DIFFICULTY_LEVEL

    # ── Generation ──────────────────────────────────────────────────────────

    def generate(
        self,
        context: BrowsingContext,
        challenge_type: Optional[str] = None,
        preferred_types: Optional[List[str]] = None,
    ) -> MicroChallenge:
        if challenge_type is not None and challenge_type not in TEMPLATES:
            raise ValueError(f"Unknown challenge type: {challenge_type}")
        selected = challenge_type or self.select_type(context, preferred_types)
        template = TEMPLATES[selected]

        prompt = self._select_prompt(selected, template.prompts)
        options = list(self._rng.choice(template.options)) if template.options else None
        difficulty = self.calculate_difficulty(context, template.difficulty)
        timeout = round(template.timeout_seconds * (1 + (difficulty - 1) * 0.2))

        return MicroChallenge(
            id=self._make_id(selected),
            type=selected,
            prompt=prompt,
            timeout_seconds=timeout,
            difficulty=difficulty,
            options=options,
        )

    def generate_multiple(
        self,
        count: int,
        context: BrowsingContext,
        preferred_types: Optional[List[str]] = None,
    ) -> List[MicroChallenge]:
        """One challenge per slot, cycling through the preferred (or all) types."""
        types = list(preferred_types) if preferred_types else list(CHALLENGE_TYPES)
        return [
            self.generate(context, challenge_type=types[i % len(types)])
            for i in range(count)
        ]

    def select_type(self, context: BrowsingContext, preferred_types: Optional[List[str]] = None) -> str:
        if preferred_types:
            return self._rng.choice(list(preferred_types))

        if is_late_night(context.hour):
            return self._rng.choice(["breathing", "reflection"])
        if is_work_hours(context.hour, context.weekday):
            return self._rng.choice(["intention", "quick-task"])
        if categorize_url(context.url) in ("social-media", "video-streaming"):
            return self._rng.choice(["reflection", "intention"])
        return self._rng.choice(list(CHALLENGE_TYPES))

    @staticmethod
    def calculate_difficulty(context: BrowsingContext, base: int) -> int:
        difficulty = base
        if context.session_minutes > 60:
            difficulty += 1
        if context.idle_productive_minutes > 30:
            difficulty += 1
        return min(difficulty, MAX_DIFFICULTY)

    @staticmethod
    def validate_response(challenge: MicroChallenge, response: str) -> bool:
        if challenge.options:
            return response in challenge.options
        return bool(response.strip())

    # ── Global difficulty level ─────────────────────────────────────────────

    def record_completion(self) -> float:
        self.difficulty_level = min(self.difficulty_level + COMPLETION_STEP, float(MAX_DIFFICULTY))
        return self.difficulty_level

    def record_dismissal(self, steps: int = 1) -> float:
        for _ in range(max(steps, 0)):
            self.difficulty_level = max(self.difficulty_level - DISMISSAL_STEP, MIN_DIFFICULTY_LEVEL)
        return self.difficulty_level

    def reset_difficulty(self) -> None:
        self.difficulty_level = MIN_DIFFICULTY_LEVEL

    def get_statistics(self) -> dict:
        return {
            "difficulty_level": round(self.difficulty_level, 2),
            "recent_prompts": sum(len(d) for d in self._recent.values()),
        }

    # ── Internal ────────────────────────────────────────────────────────────

    def _select_prompt(self, challenge_type: str, prompts: Sequence[str]) -> str:
        recent = self._recent[challenge_type]
        unused = [p for p in prompts if p not in recent]
        if not unused:
            recent.clear()
            unused = list(prompts)
        selected = self._rng.choice(unused)
        recent.append(selected)
        return selected

    def _make_id(self, challenge_type: str) -> str:
        millis = int(self._clock().timestamp() * 1000)
        suffix = "".join(self._rng.choices(string.ascii_lowercase + string.digits, k=9))
        return f"{challenge_type}-{millis}-{suffix}"
