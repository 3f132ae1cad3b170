"""Database index management for MongoDB collections."""

import logging

from pymongo.database import Database
from pymongo.errors import OperationFailure

logger = logging.getLogger(__name__)


def ensure_indexes(db: Database) -> None:
    """
    Ensure all required indexes exist.

    Called on application startup and when a Celery worker boots.
    """
    _create_index(
        db.day_buckets,
        [("user_id", 1), ("day", 1)],
        name="user_day_unique",
        unique=True,
    )
    _create_index(
        db.oauth_identities,
        [("user_id", 1), ("provider", 1)],
        name="user_provider_idx",
    )
    _create_index(
        db.oauth_identities,
        [("provider", 1), ("external_user_id", 1)],
        name="provider_external_user_unique",
        unique=True,
    )
    logger.info("Database indexes ensured successfully")


def _create_index(collection, keys, name: str, unique: bool = False) -> None:
    try:
        collection.create_index(keys, unique=unique, background=True, name=name)
        logger.debug(f"Created index: {name}")
    except OperationFailure as e:
        # Index may already exist with different options
        if "already exists" not in str(e):
            logger.warning(f"Failed to create {name} index: {e}")
