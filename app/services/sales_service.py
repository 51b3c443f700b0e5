import logging
from datetime import datetime, timezone

from pymongo import UpdateOne

from app.core.errors import NotFoundError
from app.db.mongo import ORDERS, PRODUCTS, get_db
from app.db.unit_of_work import run_in_unit_of_work
from app.utils.serializers import parse_object_id

logger = logging.getLogger("SALES")


def history_entry(order_id, sold_at, line: dict) -> dict:
    return {
        "date": sold_at,
        "quantity": line["quantity"],
        "revenue": round(float(line["price"]) * line["quantity"], 2),
        "orderId": order_id,
    }


def record_sale(order_id) -> bool:
    """Project an order's line items into product counters and history.

    Runs at most once per order: the order is claimed by stamping
    ``salesRecordedAt`` where it is still null, in the same unit of work as
    the product writes. Returns ``False`` when the sale was already recorded
    (orders created through checkout are recorded inline).
    """
    oid = parse_object_id(order_id, "Order")
    db = get_db()
    orders = db[ORDERS]
    if orders.find_one({"_id": oid}, {"_id": 1}) is None:
        raise NotFoundError("Order not found", resource_id=str(order_id))

    def apply(uow):
        order = orders.find_one_and_update(
            {"_id": oid, "salesRecordedAt": None},
            {"$set": {"salesRecordedAt": datetime.now(timezone.utc)}},
            session=uow.session,
        )
        if order is None:
            return False
        uow.compensate(orders.update_one, {"_id": oid}, {"$set": {"salesRecordedAt": None}})

        ops, undo = [], []
        for item in order.get("items", []):
            qty = item["quantity"]
            ops.append(UpdateOne(
                {"_id": item["product"]},
                {
                    "$inc": {"sold": qty, "salesCount": qty, "quantity": -qty},
                    "$push": {"salesHistory": history_entry(oid, order.get("createdAt"), item)},
                },
            ))
            undo.append(UpdateOne(
                {"_id": item["product"]},
                {
                    "$inc": {"sold": -qty, "salesCount": -qty, "quantity": qty},
                    "$pull": {"salesHistory": {"orderId": oid}},
                },
            ))
        if ops:
            uow.bulk_write(db[PRODUCTS], ops, undo)
        logger.info(f"Recorded sale for order {oid} ({len(ops)} line items)")
        return True

    return run_in_unit_of_work(apply)


def backfill_sales_count(db=None) -> int:
    """Copy ``sold`` into ``salesCount`` where the counter was never set."""
    db = db if db is not None else get_db()
    products = db[PRODUCTS]
    query = {
        "$or": [
            {"salesCount": {"$exists": False}},
            {"salesCount": None},
            {"salesCount": 0},
            {"salesCount": ""},
            {"salesCount": "0"},
        ],
        "sold": {"$gte": 0},
    }
    ops = [
        UpdateOne({"_id": p["_id"]}, {"$set": {"salesCount": p.get("sold", 0)}})
        for p in products.find(query, {"sold": 1})
    ]
    if not ops:
        return 0
    result = products.bulk_write(ops, ordered=False)
    logger.info(f"Backfill complete: {result.modified_count} products updated")
    return result.modified_count
