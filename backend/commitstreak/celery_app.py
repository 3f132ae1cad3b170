"""Celery application bootstrap used by workers and beat."""

from __future__ import annotations

from celery import Celery
from celery.signals import worker_ready
from kombu import Exchange, Queue

from commitstreak.config import settings

celery_app = Celery(
    "commitstreak",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["commitstreak.tasks.streaks"],
)

celery_app.conf.update(
    task_default_queue=settings.CELERY_DEFAULT_QUEUE,
    task_default_exchange="commitstreak",
    task_default_routing_key="streaks.default",
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_queues=[
        # Fan-out and anything unassigned
        Queue(
            settings.CELERY_DEFAULT_QUEUE,
            Exchange("commitstreak"),
            routing_key="streaks.default",
        ),
        # Per-user refreshes: GitHub bound, one user per task
        Queue(
            "streaks.refresh",
            Exchange("commitstreak"),
            routing_key="streaks.refresh",
        ),
    ],
    task_routes={
        "commitstreak.tasks.streaks.refresh_user_streak": {
            "queue": "streaks.refresh",
            "routing_key": "streaks.refresh",
        },
    },
    broker_connection_retry_on_startup=True,
    # Settles day rollover for users who have not opened the app
    beat_schedule={
        "refresh-all-streaks": {
            "task": "commitstreak.tasks.streaks.refresh_all_streaks",
            "schedule": settings.STREAK_REFRESH_INTERVAL_MINUTES * 60.0,
        },
    },
    timezone="UTC",
)


@worker_ready.connect
def on_worker_ready(**kwargs):
    """Make sure indexes exist before the first refresh writes buckets."""
    from commitstreak.database.ensure_indexes import ensure_indexes
    from commitstreak.database.mongo import get_database

    ensure_indexes(get_database())


__all__ = ["celery_app"]
