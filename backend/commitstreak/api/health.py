"""Liveness endpoint."""

import logging

from fastapi import APIRouter, Depends
from pymongo.database import Database
from pymongo.errors import PyMongoError

from commitstreak.config import settings
from commitstreak.database.mongo import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
def health_check(db: Database = Depends(get_db)):
    mongo_ok = True
    try:
        db.command("ping")
    except PyMongoError as e:
        logger.warning(f"MongoDB ping failed: {e}")
        mongo_ok = False

    return {
        "status": "ok" if mongo_ok else "degraded",
        "version": settings.APP_VERSION,
        "mongodb": "ok" if mongo_ok else "unreachable",
    }
