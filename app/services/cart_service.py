"""Per-user shopping carts stored on the user document.

A cart is the ``cart`` array on ``users``: ``[{productId, quantity}]``.
Reads populate each entry with the current product and drop entries whose
product no longer exists. Stock is only checked advisorily here; checkout
does the real reservation.
"""

import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ReturnDocument

from app.core.errors import (
    CartStockError,
    InvalidInputError,
    NotAuthorizedError,
    NotFoundError,
    UnavailableProductsError,
)
from app.db.mongo import PRODUCTS, USERS, get_db
from app.utils.serializers import parse_object_id

logger = logging.getLogger("CART")

MAX_ITEM_QUANTITY = 10
PRODUCT_FIELDS = {"name": 1, "price": 1, "offerPrice": 1, "image": 1, "quantity": 1, "status": 1}


def _require_shopper(user: dict, action: str):
    if user.get("role") == "admin":
        raise NotAuthorizedError(f"Admin accounts {action}")


def _normalize(entries: list) -> Dict[ObjectId, int]:
    """Keep well formed entries, summing duplicates; quantities are capped."""
    cart: Dict[ObjectId, int] = {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        pid, qty = entry.get("productId"), entry.get("quantity")
        if not pid or not ObjectId.is_valid(str(pid)):
            continue
        if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
            continue
        oid = ObjectId(str(pid))
        cart[oid] = min(cart.get(oid, 0) + qty, MAX_ITEM_QUANTITY)
    return cart


def _active_products(product_ids: List[ObjectId]) -> Dict[ObjectId, dict]:
    if not product_ids:
        return {}
    found = get_db()[PRODUCTS].find({"_id": {"$in": product_ids}, "status": True}, PRODUCT_FIELDS)
    return {p["_id"]: p for p in found}


def _populate(entries: List[dict]) -> List[dict]:
    ids = [e["productId"] for e in entries]
    products = {
        p["_id"]: p for p in get_db()[PRODUCTS].find({"_id": {"$in": ids}}, PRODUCT_FIELDS)
    } if ids else {}
    populated = []
    for e in entries:
        product = products.get(e["productId"])
        if product is not None:
            populated.append({"productId": e["productId"], "quantity": e["quantity"], "product": product})
    return populated


def _save(user_id: ObjectId, cart: Dict[ObjectId, int]) -> List[dict]:
    entries = [{"productId": pid, "quantity": qty} for pid, qty in cart.items()]
    updated = get_db()[USERS].find_one_and_update(
        {"_id": user_id},
        {"$set": {"cart": entries}},
        projection={"cart": 1},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise NotFoundError("User not found", resource_id=str(user_id))
    return _populate(updated.get("cart") or [])


def get_cart(user: dict) -> List[dict]:
    """Populated cart for ``user``; stale entries are pruned from the store."""
    _require_shopper(user, "don't have shopping carts")
    uid = parse_object_id(user.get("_id") or user.get("id"), "User")
    users = get_db()[USERS]
    stored = users.find_one({"_id": uid}, {"cart": 1})
    if stored is None:
        raise NotFoundError("User not found", resource_id=str(uid))

    entries = stored.get("cart") or []
    valid = _populate(entries)
    if len(valid) != len(entries):
        # only prune if nobody rewrote the cart since it was read
        users.update_one(
            {"_id": uid, "cart": entries},
            {"$set": {"cart": [{"productId": e["productId"], "quantity": e["quantity"]} for e in valid]}},
        )
        logger.info(f"Dropped {len(entries) - len(valid)} stale cart entries for user {uid}")
    return valid


def replace_cart(user: dict, cart: Any) -> List[dict]:
    """Overwrite the user's cart with the well formed entries of ``cart``."""
    _require_shopper(user, "cannot modify carts")
    if not isinstance(cart, list):
        raise InvalidInputError("Cart must be an array of items", field="cart")
    uid = parse_object_id(user.get("_id") or user.get("id"), "User")

    wanted = _normalize(cart)
    products = _active_products(list(wanted))
    missing = [pid for pid in wanted if pid not in products]
    if missing:
        raise UnavailableProductsError(missing)

    issues = [
        {"productId": str(pid), "available": int(products[pid].get("quantity") or 0), "requested": qty}
        for pid, qty in wanted.items()
        if int(products[pid].get("quantity") or 0) < qty
    ]
    if issues:
        raise CartStockError(issues)

    saved = _save(uid, wanted)
    logger.info(f"Cart updated for user {uid}: {len(saved)} entries")
    return saved


def merge_cart(user: dict, guest_cart: Optional[Any]) -> List[dict]:
    """Fold a guest cart into the user's stored cart, summing shared products."""
    _require_shopper(user, "cannot modify carts")
    if not isinstance(guest_cart, list):
        raise InvalidInputError("Guest cart must be an array", field="guestCart")
    uid = parse_object_id(user.get("_id") or user.get("id"), "User")
    stored = get_db()[USERS].find_one({"_id": uid}, {"cart": 1})
    if stored is None:
        raise NotFoundError("User not found", resource_id=str(uid))

    merged = _normalize(stored.get("cart") or [])
    for pid, qty in _normalize(guest_cart).items():
        merged[pid] = min(merged.get(pid, 0) + qty, MAX_ITEM_QUANTITY)

    products = _active_products(list(merged))
    missing = [pid for pid in merged if pid not in products]
    if missing:
        raise UnavailableProductsError(missing, "Some products in the merged cart are unavailable")

    saved = _save(uid, merged)
    logger.info(f"Guest cart merged for user {uid}: {len(saved)} entries")
    return saved
