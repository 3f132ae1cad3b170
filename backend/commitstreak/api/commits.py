"""Commits for one local calendar day."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from commitstreak.api.deps import get_streak_engine
from commitstreak.dtos import CommitResponse, DayCommitsResponse, FailedRepository
from commitstreak.middleware.auth import get_current_user_id
from commitstreak.services.streak_service import StreakEngine

router = APIRouter(prefix="/github", tags=["Commits"])


@router.get("/commits", response_model=DayCommitsResponse)
async def get_commits(
    date: str = Query(..., description="Local calendar day, YYYY-MM-DD"),
    user_id: str = Depends(get_current_user_id),
    engine: StreakEngine = Depends(get_streak_engine),
):
    result = await engine.get_commits_for_day(user_id, date)
    commits = [CommitResponse.from_record(record) for record in result.commits]
    return DayCommitsResponse(
        date=result.day,
        commits=commits,
        total_commits=len(commits),
        total_additions=sum(c.additions for c in commits),
        total_deletions=sum(c.deletions for c in commits),
        is_complete=result.is_complete,
        partial=result.partial,
        failed_repositories=[FailedRepository(**f.model_dump()) for f in result.failures],
    )
