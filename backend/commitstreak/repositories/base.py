"""Shared MongoDB access for engine-owned collections"""

from __future__ import annotations

from abc import ABC
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo.collection import Collection
from pymongo.database import Database

T = TypeVar("T", bound=BaseModel)


class BaseRepository(ABC, Generic[T]):
    """Reads and partial updates over one collection of pydantic entities"""

    def __init__(self, db: Database, collection_name: str, model_class: Type[T]):
        self.db = db
        self.collection: Collection = db[collection_name]
        self.model_class = model_class

    def find_by_id(self, entity_id: str | ObjectId) -> Optional[T]:
        identifier = self._to_object_id(entity_id)
        if identifier is None:
            return None
        return self._to_model(self.collection.find_one({"_id": identifier}))

    def find_one(self, query: Dict[str, Any]) -> Optional[T]:
        return self._to_model(self.collection.find_one(query))

    def find_many(
        self,
        query: Dict[str, Any],
        sort: Optional[List[tuple]] = None,
        limit: int = 0,
    ) -> List[T]:
        cursor = self.collection.find(query)
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return [self._to_model(doc) for doc in cursor if doc]

    def update_one(self, entity_id: str | ObjectId, updates: Dict[str, Any]) -> bool:
        """$set fields on one document; False when the id matches nothing."""
        identifier = self._to_object_id(entity_id)
        if identifier is None:
            return False
        result = self.collection.update_one({"_id": identifier}, {"$set": updates})
        return result.matched_count > 0

    def _to_model(self, doc: Optional[Dict[str, Any]]) -> Optional[T]:
        if not doc:
            return None
        return self.model_class.model_validate(doc)

    @staticmethod
    def _to_object_id(value: str | ObjectId | None) -> ObjectId | None:
        if isinstance(value, ObjectId):
            return value
        if isinstance(value, str):
            try:
                return ObjectId(value)
            except (InvalidId, TypeError):
                return None
        return None

    @staticmethod
    def ensure_object_id(value: str | ObjectId) -> ObjectId:
        """
        User ids arrive as strings from JWTs and Celery payloads.

        Raises:
            ValueError: not a 24-character hex id
        """
        if isinstance(value, ObjectId):
            return value
        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        raise ValueError(f"Invalid ObjectId: {value!r}")
