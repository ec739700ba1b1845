"""
MongoDB access

A single client is created at import time when DATABASE_URL and DATABASE_NAME
are set. Routes receive the database through the ``get_db`` dependency so
tests can swap in a different one.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

import config

client: Optional[MongoClient] = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    client = MongoClient(config.DATABASE_URL)
    db = client[config.DATABASE_NAME]


def get_db():
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id string, returning None for anything that is not an ObjectId."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def create_document(database, collection_name: str, data) -> str:
    """Insert a pydantic model or dict, stamping createdAt/updatedAt."""
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True)
    else:
        doc = dict(data)
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database) -> None:
    database["order"].create_index([("trackingNumber", ASCENDING)], unique=True)
    database["order"].create_index([("createdAt", ASCENDING)])
    database["user"].create_index([("email", ASCENDING)], unique=True)


def serialize(value: Any) -> Any:
    """Recursively turn ObjectIds into strings so documents are JSON friendly."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value


def doc_to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = serialize(dict(doc))
    if "_id" in doc:
        doc["id"] = doc.pop("_id")
    # hide sensitive fields
    doc.pop("passwordHash", None)
    return doc
