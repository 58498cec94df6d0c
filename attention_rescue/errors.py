"""
Error types shared across the engine.

None of these are fatal. Validation errors reject a call before any state is
touched; storage errors are logged and the caller keeps its in-memory value.
"""

from __future__ import annotations

from typing import List, Optional


class AttentionRescueError(Exception):
    """Base class for all engine errors."""


class ValidationError(AttentionRescueError):
    """Malformed context, settings or classification. No state was mutated."""

    def __init__(self, errors: List[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "validation failed")


class StorageError(AttentionRescueError):
    """A persistence read or write failed."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        self.key = key
        super().__init__(message)


class StaleDerivedStateError(AttentionRescueError):
    """A derived table is older than its refresh interval."""

    def __init__(self, name: str, age_minutes: float) -> None:
        self.name = name
        self.age_minutes = age_minutes
        super().__init__(f"{name} is stale ({age_minutes:.0f} min old)")


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Names the three ways the engine can go wrong so every layer reacts the
#   same way.
#
# Key classes:
#   - ValidationError: carries the full list of problems, not just the first,
#     so a caller can fix a malformed payload in one round-trip.
#   - StorageError: raised by the Repository whenever SQLite fails. Services
#     catch it, log a warning, and keep going with what's in memory.
#   - StaleDerivedStateError: only raised on *strict* access to the pattern
#     table. Normal access quietly rebuilds instead.
#
# Interviewer-friendly talking points:
#   1. Fail open: a background nudge engine should never crash the host.
#      The worst outcome of an error is "no intervention this time."
#   2. One base class makes "catch anything from us" possible without a
#      bare except.
