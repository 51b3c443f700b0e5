import logging
from datetime import datetime, timezone
from typing import List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument

from app.core import config
from app.core.errors import InvalidInputError, NotFoundError
from app.db.mongo import PRODUCTS, get_db
from app.models.schemas import ProductIn, ProductUpdate
from app.utils.serializers import parse_object_id

logger = logging.getLogger("CATALOG")


def _stock_from_variants(variants: List[dict]) -> int:
    return sum(int(v.get("stock") or 0) for v in variants)


def _check_featured_limit(products):
    if products.count_documents({"featured": True}) >= config.MAX_FEATURED_PRODUCTS:
        raise InvalidInputError(
            f"Maximum {config.MAX_FEATURED_PRODUCTS} featured products allowed", field="featured"
        )


def create_product(data: ProductIn) -> dict:
    products = get_db()[PRODUCTS]
    doc = data.model_dump()
    if doc.get("salesCount") is None:
        doc["salesCount"] = doc["sold"]
    if doc["variants"]:
        doc["quantity"] = _stock_from_variants(doc["variants"])
    if doc["featured"]:
        _check_featured_limit(products)
    now = datetime.now(timezone.utc)
    doc.update({"_id": ObjectId(), "salesHistory": [], "createdAt": now, "updatedAt": now})
    products.insert_one(doc)
    logger.info(f"Product {doc['_id']} created: {doc['name']}")
    return doc


def get_product(product_id) -> dict:
    pid = parse_object_id(product_id, "Product")
    product = get_db()[PRODUCTS].find_one({"_id": pid})
    if product is None:
        raise NotFoundError("Product not found", resource_id=str(product_id))
    return product


def list_products(featured: Optional[bool] = None, active: Optional[bool] = None) -> List[dict]:
    query = {}
    if featured:
        query["featured"] = True
    if active:
        query["status"] = True
    return list(get_db()[PRODUCTS].find(query, {"salesHistory": 0}).sort("createdAt", DESCENDING))


def update_product(product_id, changes: ProductUpdate) -> dict:
    """Apply an admin edit. Only fields declared on ``ProductUpdate`` reach the store."""
    pid = parse_object_id(product_id, "Product")
    products = get_db()[PRODUCTS]
    current = products.find_one({"_id": pid})
    if current is None:
        raise NotFoundError("Product not found", resource_id=str(product_id))

    sets = changes.model_dump(exclude_unset=True)
    if not sets:
        raise InvalidInputError("No updatable fields supplied")
    price = sets.get("price", current.get("price") or 0)
    offer = sets.get("offerPrice", current.get("offerPrice"))
    if offer is not None and offer > price:
        raise InvalidInputError("offerPrice cannot exceed price", field="offerPrice")
    if "variants" in sets:
        sets["quantity"] = _stock_from_variants(sets["variants"] or [])
    if sets.get("featured") and not current.get("featured"):
        _check_featured_limit(products)
    sets["updatedAt"] = datetime.now(timezone.utc)

    # last writer wins against in-flight reservations on the same product
    updated = products.find_one_and_update(
        {"_id": pid}, {"$set": sets}, return_document=ReturnDocument.AFTER
    )
    if updated is None:
        raise NotFoundError("Product not found", resource_id=str(product_id))
    logger.info(f"Product {pid} updated: {sorted(k for k in sets if k != 'updatedAt')}")
    return updated


def delete_product(product_id) -> str:
    pid = parse_object_id(product_id, "Product")
    res = get_db()[PRODUCTS].delete_one({"_id": pid})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found", resource_id=str(product_id))
    logger.info(f"Product {pid} deleted")
    return str(pid)
