"""Engine-level exceptions surfaced to the presentation layer."""

from __future__ import annotations


class StreakEngineError(Exception):
    """Base exception for engine failures."""


class CredentialMissingError(StreakEngineError):
    """Raised when the user has no linked GitHub credential."""

    def __init__(self, user_id: str):
        super().__init__(f"No GitHub credential linked for user {user_id}")
        self.user_id = user_id


class InvalidDateError(StreakEngineError):
    """Raised when a caller asks for a malformed or future day."""
