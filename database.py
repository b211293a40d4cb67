"""
Database helpers

MongoDB connection and small helpers shared by the services. Collections are
named after the lowercase schema name (Order -> "order").
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db: Optional[Database] = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db() -> Database:
    # Overridden in tests through app.dependency_overrides
    if db is None:
        raise RuntimeError("Database is not configured (DATABASE_URL / DATABASE_NAME)")
    return db


def utcnow() -> datetime:
    # Mongo hands datetimes back naive in UTC, so keep ours the same
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_oid(id_str: Any) -> Optional[ObjectId]:
    """Return the ObjectId for ``id_str`` or None when it is not a valid id."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc.setdefault("updated_at", now)
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  sort: Optional[list] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


class UnitOfWork:
    """Groups several writes so that a failure part way through undoes the
    writes already applied.

    Standalone Mongo deployments have no multi-document transactions, so each
    write records how to reverse itself and the undo log is replayed in reverse
    order when the block raises.

        with UnitOfWork(db) as uow:
            payment_id = uow.insert("payment", payment)
            uow.update("order", {"_id": order_id}, {"$set": {...}})
    """

    def __init__(self, database: Database):
        self.db = database
        self._undo: List[tuple] = []

    def __enter__(self) -> "UnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.rollback()
        return False

    def insert(self, collection_name: str, data: Union[BaseModel, dict]) -> str:
        inserted_id = create_document(self.db, collection_name, data)
        self._undo.append(("delete", collection_name, ObjectId(inserted_id)))
        return inserted_id

    def update(self, collection_name: str, filter_dict: Dict[str, Any], update: Dict[str, Any]) -> Optional[dict]:
        """Apply ``update`` to the single matching document and return the new version."""
        collection = self.db[collection_name]
        # match and write in one atomic call
        before = collection.find_one_and_update(filter_dict, update, return_document=ReturnDocument.BEFORE)
        if before is None:
            return None
        self._undo.append(("restore", collection_name, before))
        return collection.find_one({"_id": before["_id"]})

    def rollback(self) -> None:
        while self._undo:
            action, collection_name, payload = self._undo.pop()
            try:
                if action == "delete":
                    self.db[collection_name].delete_one({"_id": payload})
                else:
                    self.db[collection_name].replace_one({"_id": payload["_id"]}, payload)
            except Exception:
                logger.exception("Rollback of %s on %s failed", action, collection_name)
                raise
