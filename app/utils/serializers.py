from datetime import datetime
from typing import Any, Optional

from bson import ObjectId

from app.core.errors import NotFoundError


def parse_object_id(value: Any, label: str = "Resource") -> ObjectId:
    """Resolve a client supplied id; malformed ids are reported as not found."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(str(value)):
        raise NotFoundError(f"{label} not found: {value}", resource_id=str(value))
    return ObjectId(str(value))


def to_plain(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    """JSON-ready copy of a stored document: ``_id`` becomes ``id``."""
    if not doc:
        return doc
    doc = dict(doc)
    doc.pop("__v", None)
    _id = doc.pop("_id", None)
    out = {"id": str(_id) if _id is not None else None}
    out.update(to_plain(doc))
    return out


def serialize_order(doc: Optional[dict]) -> Optional[dict]:
    out = serialize_doc(doc)
    if out and out.get("id"):
        out["orderNumber"] = f"ORD-{out['id'][-8:].upper()}"
    return out
