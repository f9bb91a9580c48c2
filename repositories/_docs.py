from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId


def _serialize_doc(doc: dict) -> dict:
    """Convert MongoDB ObjectId to string for JSON serialization."""
    if doc is None:
        return None
    if "_id" in doc and isinstance(doc["_id"], ObjectId):
        doc["_id"] = str(doc["_id"])
    return doc


def _object_id(_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(_id)
    except (InvalidId, TypeError):
        return None
