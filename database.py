"""
MongoDB access helpers.

The client is created lazily so importing the app never opens a connection.
Route handlers receive the database through the ``get_db`` dependency, which
tests override with an in-memory database.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

import settings

logger = logging.getLogger(__name__)

_client: Optional[MongoClient] = None


def get_db() -> Database:
    global _client
    if _client is None:
        logger.info("Connecting to MongoDB database %s", settings.DATABASE_NAME)
        _client = MongoClient(settings.DATABASE_URL, serverSelectionTimeoutMS=5000)
        ensure_indexes(_client[settings.DATABASE_NAME])
    return _client[settings.DATABASE_NAME]


def ensure_indexes(db: Database) -> None:
    db["product"].create_index([("slug", ASCENDING)], unique=True)
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["order"].create_index([("order_number", ASCENDING)], unique=True)
    db["cart"].create_index([("owner_key", ASCENDING)], unique=True)
    db["giftcard"].create_index([("code", ASCENDING)], unique=True)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document, stamping created_at/updated_at, and return its id as a string."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(exclude={"id"})
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    if not doc.get("created_at"):
        doc["created_at"] = now
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(db: Database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, sort: Optional[list] = None):
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def next_sequence(db: Database, name: str) -> int:
    """Atomically increment and return the named counter."""
    doc = db["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"seq": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return int(doc["seq"])


def to_oid(id_str: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    doc["id"] = str(doc.pop("_id"))
    return doc
