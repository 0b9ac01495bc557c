"""
MongoDB access for the rental API.

A single module-level client is created from DATABASE_URL. Routes receive the
database through the `get_db` dependency so tests can swap it out.
"""

import os
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "rental")

db: Optional[Database] = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not available")
    return db


def utcnow() -> datetime:
    # pymongo stores naive datetimes as UTC and returns them naive
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Union[date, datetime]) -> datetime:
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document, stamping created_at/updated_at. Returns the new id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = db[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def parse_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
    return ObjectId(str(value))


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v) if v is not None else None
        else:
            out[k] = _serialize_value(v)
    return out


def populate(db: Database, docs: Iterable[Dict[str, Any]], field: str, collection_name: str,
             fields: Optional[List[str]] = None, target: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Replace the ObjectId stored under `field` with the referenced document,
    written to `target` (defaults to the field name without its `_id` suffix).
    References to missing documents become None.
    """
    docs = list(docs)
    target = target or (field[:-3] if field.endswith("_id") else field)
    ids = {d[field] for d in docs if d.get(field) is not None}
    projection = {f: 1 for f in fields} if fields else None
    found: Dict[ObjectId, Dict[str, Any]] = {}
    if ids:
        for ref in db[collection_name].find({"_id": {"$in": list(ids)}}, projection):
            if collection_name == "user":
                ref.pop("password_hash", None)
            found[ref["_id"]] = ref
    for d in docs:
        d[target] = found.get(d.get(field))
    return docs


def ensure_indexes(db: Database) -> None:
    db["vehicle"].create_index([("license_plate", ASCENDING)], unique=True)
    db["user"].create_index([("email", ASCENDING)], unique=True)
    db["booking"].create_index([("customer_id", ASCENDING), ("created_at", DESCENDING)])
    db["booking"].create_index([("vehicle_id", ASCENDING), ("start_date", ASCENDING), ("end_date", ASCENDING)])
    db["booking"].create_index([("status", ASCENDING), ("payment_status", ASCENDING)])
    db["paymentmethod"].create_index([("stripe_payment_method_id", ASCENDING)], unique=True)
    db["paymentmethod"].create_index([("user_id", ASCENDING), ("is_default", ASCENDING)])
