"""
MongoDB access helpers.

`db` is None when DATABASE_URL is not set; every helper goes through
`get_collection`, which refuses to run without a configured database.
Documents keep their id in `_id` as a plain string and are handed back to
callers as `{"id": ..., **fields}`.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.collection import Collection

import config
from errors import DocumentNotFoundError

logger = logging.getLogger(__name__)

db = None
if config.DATABASE_URL:
    _client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = _client[config.DATABASE_NAME]


def get_collection(collection_name: str) -> Collection:
    if db is None:
        raise RuntimeError("Database not configured")
    return db[collection_name]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(ObjectId())


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out = {"id": str(doc.pop("_id"))}
    out.update(doc)
    return out


def _as_dict(data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True, exclude_none=True)
    return dict(data)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]],
                    doc_id: Optional[str] = None) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id."""
    doc = _as_dict(data)
    doc.pop("id", None)
    ts = now_utc()
    doc["createdAt"] = ts
    doc["updatedAt"] = ts
    doc["_id"] = doc_id or new_id()
    get_collection(collection_name).insert_one(doc)
    return doc["_id"]


def set_document(collection_name: str, doc_id: str, data: Union[BaseModel, Dict[str, Any]],
                 merge: bool = False) -> str:
    """Write a document under a known id, replacing it unless merge is set."""
    doc = _as_dict(data)
    doc.pop("id", None)
    coll = get_collection(collection_name)
    if merge:
        coll.update_one({"_id": doc_id}, {"$set": doc}, upsert=True)
    else:
        doc["_id"] = doc_id
        coll.replace_one({"_id": doc_id}, doc, upsert=True)
    return doc_id


def get_document(collection_name: str, doc_id: str) -> Optional[Dict[str, Any]]:
    return serialize_doc(get_collection(collection_name).find_one({"_id": doc_id}))


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = get_collection(collection_name).find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(d) for d in cursor]


def update_document(collection_name: str, doc_id: str, data: Dict[str, Any]) -> str:
    """Merge fields into an existing document; raises if it is missing."""
    changes = dict(data)
    changes.pop("id", None)
    changes["updatedAt"] = now_utc()
    res = get_collection(collection_name).update_one({"_id": doc_id}, {"$set": changes})
    if res.matched_count == 0:
        raise DocumentNotFoundError(collection_name, doc_id)
    return doc_id


def delete_document(collection_name: str, doc_id: str) -> bool:
    res = get_collection(collection_name).delete_one({"_id": doc_id})
    return res.deleted_count > 0


def count_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
    return get_collection(collection_name).count_documents(filter_dict or {})
