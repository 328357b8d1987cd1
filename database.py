"""
Database Helper Functions

MongoDB helpers shared by the API routes and the order lifecycle.
Every write that depends on the current state of a document goes through
compare_and_set so the check and the write happen in one server-side update.
"""

from pymongo import MongoClient
from pymongo.errors import PyMongoError
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List
from pydantic import BaseModel

import config

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


class DatabaseUnavailable(PyMongoError):
    """Raised when no store is configured."""


def _ensure_db():
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def to_object_id(_id: Any) -> Optional[ObjectId]:
    if isinstance(_id, ObjectId):
        return _id
    try:
        return ObjectId(_id)
    except (InvalidId, TypeError):
        return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    _ensure_db()
    payload = _to_dict(data)
    now = utcnow()
    payload['created_at'] = now
    payload['updated_at'] = now
    result = db[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def find_document(collection_name: str, filter_dict: dict) -> Optional[dict]:
    _ensure_db()
    return serialize_doc(db[collection_name].find_one(filter_dict))


def get_document_by_id(collection_name: str, _id: str) -> Optional[dict]:
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return None
    return serialize_doc(db[collection_name].find_one({"_id": oid}))


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    _ensure_db()
    return db[collection_name].count_documents(filter_dict or {})


def update_document(collection_name: str, _id: str, update_data: Union[BaseModel, Dict[str, Any]]) -> bool:
    """Unconditional update. Returns False when the id matches nothing."""
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return False
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = utcnow()
    result = db[collection_name].update_one({"_id": oid}, update)
    return result.matched_count > 0


def compare_and_set(collection_name: str, _id: str, expected: Dict[str, Any], changes: Dict[str, Any]) -> bool:
    """Apply ``changes`` only if every predicate in ``expected`` still holds.

    The predicates are part of the update filter, so MongoDB evaluates them
    and writes in a single atomic single-document operation. Of two racing
    callers exactly one sees True.
    """
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return False
    filter_dict = dict(expected)
    filter_dict["_id"] = oid
    update = {"$set": dict(changes)}
    update["$set"]["updated_at"] = utcnow()
    result = db[collection_name].update_one(filter_dict, update)
    return result.modified_count > 0


def upsert_document(collection_name: str, filter_dict: dict, data: Union[BaseModel, Dict[str, Any]]) -> Optional[dict]:
    _ensure_db()
    now = utcnow()
    payload = _to_dict(data)
    payload["updated_at"] = now
    db[collection_name].update_one(
        filter_dict,
        {"$set": payload, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )
    return find_document(collection_name, filter_dict)


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return False
    result = db[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0


def delete_documents(collection_name: str, filter_dict: dict) -> int:
    _ensure_db()
    return db[collection_name].delete_many(filter_dict).deleted_count


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d
