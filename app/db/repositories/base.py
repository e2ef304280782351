from typing import Any, Dict, Optional

from bson import ObjectId


def to_object_id(value: Optional[str]) -> Optional[ObjectId]:
    """Convert a string id to ObjectId, None when it is not a valid id"""
    if isinstance(value, ObjectId):
        return value
    if value and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def document_to_dict(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Stringify the ObjectId so the document validates into a pydantic model"""
    if document is None:
        return None
    data = dict(document)
    if "_id" in data:
        data["_id"] = str(data["_id"])
    return data
