"""Current streak endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from commitstreak.api.deps import get_streak_engine
from commitstreak.config import settings
from commitstreak.dtos import FailedRepository, StreakResponse
from commitstreak.middleware.auth import get_current_user_id
from commitstreak.services.streak.models import StreakReport
from commitstreak.services.streak_service import StreakEngine
from commitstreak.utils.clock import Deadline

router = APIRouter(prefix="/streak", tags=["Streak"])


def to_response(report: StreakReport) -> StreakResponse:
    return StreakResponse(
        current_streak=report.display_streak,
        stored_streak=report.state.current_streak,
        last_active_day=report.state.last_active_day,
        status=report.status.value,
        broken=report.broken,
        stale=report.stale,
        partial=report.partial,
        updated_at=report.state.updated_at,
        failed_repositories=[FailedRepository(**f.model_dump()) for f in report.failures],
    )


@router.get("", response_model=StreakResponse)
async def get_streak(
    user_id: str = Depends(get_current_user_id),
    engine: StreakEngine = Depends(get_streak_engine),
):
    return to_response(await engine.get_streak(user_id))


@router.post("/refresh", response_model=StreakResponse)
async def refresh_streak(
    user_id: str = Depends(get_current_user_id),
    engine: StreakEngine = Depends(get_streak_engine),
):
    """Refresh now, ignoring the refresh TTL."""
    deadline = Deadline.after(engine.clock, settings.STREAK_DEADLINE_SECONDS)
    return to_response(await engine.refresh_streak(user_id, deadline))
