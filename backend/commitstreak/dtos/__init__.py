from .commit import (
    CommitResponse,
    DayCommitsResponse,
    FailedRepository,
    RepositoryRef,
)
from .streak import StreakResponse

__all__ = [
    # Commits
    "CommitResponse",
    "DayCommitsResponse",
    "FailedRepository",
    "RepositoryRef",
    # Streak
    "StreakResponse",
]
