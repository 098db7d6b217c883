"""
MongoDB access helpers.

Every write stamps created_at / updated_at and publishes a change event on
`changes`, so any listener (the websocket feed, synchronizers) sees writes no
matter which code path performed them.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient, ReturnDocument

import config
from realtime import DELETE, INSERT, UPDATE, ChangeHub

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]

changes = ChangeHub()

ORDERED = [("order_index", ASCENDING), ("_id", ASCENDING)]


class DatabaseUnavailable(Exception):
    pass


def _collection(collection_name: str):
    if db is None:
        raise DatabaseUnavailable("Database not available. Check DATABASE_URL and DATABASE_NAME.")
    return db[collection_name]


def _to_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return dict(data)


def _object_id(doc_id: str) -> Optional[ObjectId]:
    if isinstance(doc_id, ObjectId):
        return doc_id
    if not ObjectId.is_valid(doc_id):
        return None
    return ObjectId(doc_id)


def normalize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace Mongo's `_id` with a string `id`."""
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return doc


def available() -> bool:
    return db is not None


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    data_dict = _to_dict(data)
    data_dict.pop("id", None)
    now = datetime.now(timezone.utc)
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = _collection(collection_name).insert_one(data_dict)
    row = normalize({**data_dict, "_id": result.inserted_id})
    changes.publish(collection_name, INSERT, new=row)
    return row


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = _collection(collection_name).find(filter_dict or {})
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return [normalize(doc) for doc in cursor]


def get_document(collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    oid = _object_id(doc_id)
    if oid is None:
        return None
    return normalize(_collection(collection_name).find_one({"_id": oid}))


def find_one(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    return normalize(_collection(collection_name).find_one(filter_dict or {}))


def update_document(collection_name: str, doc_id: str, patch: Union[BaseModel, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Apply `patch` with $set and return the stored row, or None if no row matched."""
    oid = _object_id(doc_id)
    if oid is None:
        return None
    updates = _to_dict(patch)
    for key in ("id", "_id", "created_at"):
        updates.pop(key, None)
    updates["updated_at"] = datetime.now(timezone.utc)
    res = _collection(collection_name).find_one_and_update(
        {"_id": oid},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if res is None:
        return None
    row = normalize(res)
    changes.publish(collection_name, UPDATE, new=row)
    return row


def delete_document(collection_name: str, doc_id: str) -> bool:
    oid = _object_id(doc_id)
    if oid is None:
        return False
    old = _collection(collection_name).find_one_and_delete({"_id": oid})
    if old is None:
        return False
    changes.publish(collection_name, DELETE, old=normalize(old))
    return True


def upsert_singleton(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Create or replace the fields of a single-row collection (profile, settings, ...)."""
    current = find_one(collection_name)
    if current is None:
        return create_document(collection_name, data)
    return update_document(collection_name, current["id"], data)
