"""
Serialization utilities for handling MongoDB documents and ObjectIds.
"""

from typing import Any, Dict, Optional
from bson import ObjectId
from datetime import datetime


def convert_objectid_to_str(obj: Any, keep_datetimes: bool = False) -> Any:
    """
    Recursively convert ObjectId instances to strings in a data structure.

    Args:
        obj: The object to convert (dict, list, or any other type)
        keep_datetimes: Leave datetime values untouched instead of ISO formatting them

    Returns:
        The object with ObjectId instances converted to strings
    """
    if isinstance(obj, ObjectId):
        return str(obj)
    elif isinstance(obj, dict):
        return {key: convert_objectid_to_str(value, keep_datetimes) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [convert_objectid_to_str(item, keep_datetimes) for item in obj]
    elif isinstance(obj, datetime) and not keep_datetimes:
        return obj.isoformat()
    else:
        return obj


def document_to_model_data(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Turn a raw MongoDB document into keyword data for a pydantic model.

    The ``_id`` key becomes a string ``id`` and datetimes are kept as-is.
    """
    if document is None:
        return None
    data = convert_objectid_to_str(dict(document), keep_datetimes=True)
    if "_id" in data:
        data["id"] = data.pop("_id")
    return data
