"""
Database connection and helpers

MongoDB access for the storefront. The connection is configured from the
DATABASE_URL and DATABASE_NAME environment variables (a .env file is read).
When either is missing `db` stays None and the API reports it on /test.
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel
from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import ServerFault, ValidationFailed

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

COLLECTIONS = ("user", "product", "order")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert a document stamped with created_at/updated_at and return its id."""
    target = database if database is not None else db
    if target is None:
        raise ServerFault("Database not available")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    doc["created_at"] = now_utc()
    doc["updated_at"] = now_utc()
    result = target[collection_name].insert_one(doc)
    return str(result.inserted_id)


def ensure_indexes(database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING)])
    database["order"].create_index([("ordered_at", DESCENDING)])
    logger.info("Indexes ensured on %s", database.name)


def diagnostics(database) -> Dict[str, Any]:
    """Connection status and per-collection document counts for /test."""
    report: Dict[str, Any] = {"backend": "running", "database": "not configured", "database_name": None, "counts": {}}
    if database is None:
        return report
    report["database_name"] = database.name
    try:
        report["counts"] = {name: database[name].count_documents({}) for name in COLLECTIONS}
        report["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Diagnostics query failed: %s", e)
        report["database"] = f"error: {str(e)[:80]}"
    return report


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise ServerFault("Database not available")
    return db


def to_object_id(id_str: str) -> ObjectId:
    if not ObjectId.is_valid(id_str):
        raise ValidationFailed("Invalid id")
    return ObjectId(id_str)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # Convert ObjectId in nested fields if any
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
    # Never send password hash
    doc.pop("password_hash", None)
    return doc
