"""FastAPI application entry point."""

import logging
import os

# Configure logging based on ENV environment variable
# ENV=dev: INFO level with detailed format (default)
# ENV=prod/staging: WARNING level, minimal logs
_env = os.getenv("ENV", "dev").lower()
_is_dev = _env == "dev"
_log_level = logging.INFO if _is_dev else logging.WARNING

logging.basicConfig(
    level=_log_level,
    format=(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        if _is_dev
        else "%(levelname)s | %(message)s"
    ),
    datefmt="%H:%M:%S",
)

# Quiet per-request httpx lines; retries and quota waits are logged by the client
logging.getLogger("httpx").setLevel(logging.WARNING)

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from commitstreak.api import commits, health, streak
from commitstreak.config import settings
from commitstreak.middleware.exception_handlers import register_exception_handlers
from commitstreak.middleware.request_logging import RequestLoggingMiddleware
from commitstreak.utils.prometheus_metrics import setup_prometheus

logger = logging.getLogger(__name__)

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Daily GitHub commits and commit streaks",
    version=settings.APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)
setup_prometheus(app)

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(commits.router, prefix="/api", tags=["Commits"])
app.include_router(streak.router, prefix="/api", tags=["Streak"])


@app.get("/")
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/api/docs",
    }


@app.on_event("startup")
async def startup_event():
    """Application startup tasks."""
    try:
        from commitstreak.database.ensure_indexes import ensure_indexes
        from commitstreak.database.mongo import get_database

        ensure_indexes(get_database())
    except Exception as e:
        logger.warning(f"Failed to ensure database indexes: {e}")


@app.on_event("shutdown")
async def shutdown_event():
    from commitstreak.core.redis import AsyncRedisClient

    await AsyncRedisClient.close()
