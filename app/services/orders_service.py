import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from bson import ObjectId
from pydantic import ValidationError
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from app.core.errors import (
    ConflictError,
    InsufficientStockError,
    InvalidInputError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    ShopError,
)
from app.db.mongo import ORDERS, PRODUCTS, USERS, get_db
from app.db.unit_of_work import run_in_unit_of_work
from app.models.schemas import OrderItemIn, ShippingAddress, describe_validation_errors
from app.services import order_status, sales_service
from app.utils.serializers import parse_object_id

logger = logging.getLogger("ORDERS")

PAYMENT_METHODS = ("credit_card", "paypal", "upi", "cod")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

# compare-and-set attempts before a concurrently edited order is reported
STATUS_WRITE_ATTEMPTS = 3


@dataclass
class StatusChange:
    order: dict
    changed: bool = True
    sales_recorded: Optional[bool] = None
    sales_error: Optional[str] = None
    # sale was stamped earlier, normally at checkout
    already_recorded: bool = False


def _now():
    return datetime.now(timezone.utc)


def _actor(value):
    if isinstance(value, ObjectId) or not value:
        return value
    return ObjectId(value) if ObjectId.is_valid(str(value)) else str(value)


def _coerce_items(items) -> List[OrderItemIn]:
    if not items or not isinstance(items, (list, tuple)):
        raise InvalidInputError("Order must contain at least one item", field="items")
    try:
        return [i if isinstance(i, OrderItemIn) else OrderItemIn.model_validate(i) for i in items]
    except ValidationError as e:
        msg, field = describe_validation_errors(e.errors())
        raise InvalidInputError(msg, field=f"items.{field}" if field else "items")


def _coerce_address(address) -> ShippingAddress:
    if isinstance(address, ShippingAddress):
        return address
    if not isinstance(address, dict):
        raise InvalidInputError("Missing shipping address field: name", field="shippingAddress.name")
    try:
        return ShippingAddress.model_validate(address)
    except ValidationError as e:
        msg, field = describe_validation_errors(e.errors())
        if msg.startswith("Missing field:"):
            msg = msg.replace("Missing field:", "Missing shipping address field:", 1)
        raise InvalidInputError(msg, field=f"shippingAddress.{field}" if field else "shippingAddress")


def _money(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# --- Reservation ---

def _reserve_stock(uow, products, order_id, sold_at, line: dict):
    qty = line["quantity"]
    res = products.update_one(
        {"_id": line["product"], "quantity": {"$gte": qty}},
        {
            "$inc": {"quantity": -qty, "sold": qty, "salesCount": qty},
            "$push": {"salesHistory": sales_service.history_entry(order_id, sold_at, line)},
        },
        session=uow.session,
    )
    if res.modified_count == 0:
        # another reservation took the stock after validation
        current = products.find_one({"_id": line["product"]}, {"quantity": 1}, session=uow.session) or {}
        raise InsufficientStockError(str(line["product"]), line["name"], int(current.get("quantity") or 0), qty)
    uow.compensate(
        products.update_one,
        {"_id": line["product"]},
        {
            "$inc": {"quantity": qty, "sold": -qty, "salesCount": -qty},
            "$pull": {"salesHistory": {"orderId": order_id}},
        },
    )


def create_order(user_id, items, shipping_address, payment_method: str = "credit_card") -> dict:
    """Turn a cart into a persisted order.

    Stock decrement, inline sales recording, the order insert and the user's
    back-reference are one unit of work: a failure at any point leaves no
    trace in any collection.
    """
    items = _coerce_items(items)
    address = _coerce_address(shipping_address)
    if payment_method not in PAYMENT_METHODS:
        raise InvalidInputError(f"Invalid payment method: {payment_method}", field="paymentMethod")
    user_oid = parse_object_id(user_id, "User")
    db = get_db()

    def reserve(uow):
        products = db[PRODUCTS]
        requested = {}
        lines = []
        for item in items:
            if not item.product_id:
                raise InvalidInputError("Each item must have a product ID", field="items")
            pid = parse_object_id(item.product_id, "Product")
            product = products.find_one({"_id": pid}, session=uow.session)
            if product is None:
                raise NotFoundError(f"Product not found: {item.product_id}", resource_id=str(item.product_id))
            if item.quantity <= 0:
                raise InvalidInputError(f"Invalid quantity for {product.get('name')}", field="quantity")

            requested[pid] = requested.get(pid, 0) + item.quantity
            available = int(product.get("quantity") or 0)
            if requested[pid] > available:
                raise InsufficientStockError(str(pid), product.get("name"), available, requested[pid])

            unit_price = item.price if item.price is not None else product.get("price") or 0
            lines.append({
                "product": pid,
                "name": product.get("name"),
                "price": float(unit_price),
                "quantity": item.quantity,
                "image": product.get("image") or next(iter(product.get("images") or []), None),
            })

        total = sum((Decimal(str(line["price"])) * line["quantity"] for line in lines), Decimal("0"))
        order_id = ObjectId()
        now = _now()

        for line in lines:
            _reserve_stock(uow, products, order_id, now, line)

        order = {
            "_id": order_id,
            "user": user_oid,
            "items": lines,
            "shippingAddress": address.model_dump(),
            "paymentMethod": payment_method,
            "paymentStatus": "pending",
            "status": order_status.PENDING,
            "statusHistory": [{
                "status": order_status.PENDING,
                "previousStatus": None,
                "changedAt": now,
                "changedBy": user_oid,
                "note": "Order placed",
            }],
            "total": _money(total),
            "tax": 0,
            "shippingFee": 0,
            "discount": {"code": None, "amount": 0},
            "trackingNumber": None,
            "deliveryDate": None,
            "notes": None,
            "salesRecordedAt": now,
            "createdAt": now,
            "updatedAt": now,
        }
        db[ORDERS].insert_one(order, session=uow.session)
        uow.compensate(db[ORDERS].delete_one, {"_id": order_id})

        res = db[USERS].update_one({"_id": user_oid}, {"$push": {"orders": order_id}}, session=uow.session)
        if res.matched_count == 0:
            raise NotFoundError(f"User not found: {user_id}", resource_id=str(user_id))
        uow.compensate(db[USERS].update_one, {"_id": user_oid}, {"$pull": {"orders": order_id}})
        return order

    order = run_in_unit_of_work(reserve)
    logger.info(f"Order {order['_id']} created for user {user_oid}: {len(order['items'])} items, total {order['total']}")
    return order


# --- Status machine ---

def _apply_transition(orders, oid, current: str, new: str, changed_by, note=None, extra=None):
    now = _now()
    entry = {
        "status": new,
        "previousStatus": current,
        "changedAt": now,
        "changedBy": _actor(changed_by),
        "note": note,
    }
    sets = {"status": new, "updatedAt": now}
    if new == order_status.DELIVERED:
        sets["deliveryDate"] = now
    if extra:
        sets.update(extra)
    # the status filter rejects the write if someone moved the order meanwhile
    return orders.find_one_and_update(
        {"_id": oid, "status": current},
        {"$set": sets, "$push": {"statusHistory": entry}},
        return_document=ReturnDocument.AFTER,
    )


def _record_completed_sale(change: StatusChange, orders):
    oid = change.order["_id"]
    try:
        recorded = sales_service.record_sale(oid)
    except (ShopError, PyMongoError) as e:
        # the transition stands; recording can be replayed from the sales endpoint
        logger.error(f"Sales recording failed for completed order {oid}: {e}")
        change.sales_recorded = False
        change.sales_error = str(e)
        return
    change.sales_recorded = True
    if recorded:
        change.order = orders.find_one({"_id": oid}) or change.order
    else:
        change.already_recorded = True


def update_status(order_id, new_status: str, changed_by, note: Optional[str] = None,
                  tracking_number: Optional[str] = None, payment_status: Optional[str] = None) -> StatusChange:
    if new_status not in order_status.STATUSES:
        raise InvalidInputError(f"Unknown order status: {new_status}", field="status")
    if payment_status is not None and payment_status not in PAYMENT_STATUSES:
        raise InvalidInputError(f"Unknown payment status: {payment_status}", field="paymentStatus")
    oid = parse_object_id(order_id, "Order")
    orders = get_db()[ORDERS]

    extra = {}
    if tracking_number is not None:
        extra["trackingNumber"] = tracking_number
    if payment_status is not None:
        extra["paymentStatus"] = payment_status

    for _ in range(STATUS_WRITE_ATTEMPTS):
        order = orders.find_one({"_id": oid}, {"status": 1})
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", resource_id=str(order_id))
        current = order.get("status", order_status.PENDING)
        if not order_status.can_transition(current, new_status):
            raise InvalidTransitionError(current, new_status, order_status.allowed_transitions(current))
        updated = _apply_transition(orders, oid, current, new_status, changed_by, note, extra)
        if updated is not None:
            break
        logger.warning(f"Order {oid} changed while moving {current} -> {new_status}, re-reading")
    else:
        raise ConflictError("Order status changed concurrently, retry the update", orderId=str(oid))

    logger.info(f"Order {oid} moved {current} -> {new_status} by {changed_by}")
    change = StatusChange(order=updated)
    if new_status == order_status.COMPLETED:
        _record_completed_sale(change, orders)
    return change


def cancel_order(order_id, requesting_user_id, reason: Optional[str] = None) -> StatusChange:
    """Owner-initiated cancel, allowed from any non-terminal status."""
    oid = parse_object_id(order_id, "Order")
    orders = get_db()[ORDERS]

    for _ in range(STATUS_WRITE_ATTEMPTS):
        order = orders.find_one({"_id": oid})
        if order is None:
            raise NotFoundError("Order not found", resource_id=str(order_id))
        if not requesting_user_id or str(order.get("user")) != str(requesting_user_id):
            raise NotAuthorizedError("You are not authorized to cancel this order")

        current = order.get("status", order_status.PENDING)
        if current == order_status.CANCELLED:
            return StatusChange(order=order, changed=False)
        if order_status.is_terminal(current):
            raise InvalidTransitionError(current, order_status.CANCELLED, [])

        extra = {"cancellation": {
            "reason": reason,
            "initiatedBy": _actor(requesting_user_id),
            "cancelledAt": _now(),
        }}
        updated = _apply_transition(orders, oid, current, order_status.CANCELLED,
                                    requesting_user_id, "Cancelled by customer", extra)
        if updated is not None:
            logger.info(f"Order {oid} cancelled by owner {requesting_user_id}")
            return StatusChange(order=updated)

    raise ConflictError("Order status changed concurrently, retry the cancel", orderId=str(oid))


# --- Queries ---

def list_orders() -> List[dict]:
    db = get_db()
    orders = list(db[ORDERS].find().sort("createdAt", DESCENDING))
    user_ids = list({o["user"] for o in orders if o.get("user")})
    users = {
        u["_id"]: {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
        for u in db[USERS].find({"_id": {"$in": user_ids}}, {"name": 1, "email": 1})
    } if user_ids else {}
    for o in orders:
        o["customer"] = users.get(o.get("user"))
    return orders


def list_user_orders(user_id) -> List[dict]:
    uid = parse_object_id(user_id, "User")
    return list(get_db()[ORDERS].find({"user": uid}).sort("createdAt", DESCENDING))


def order_stats() -> dict:
    orders = get_db()[ORDERS]
    revenue = list(orders.aggregate([
        {"$match": {"status": {"$nin": [order_status.CANCELLED]}, "paymentStatus": "paid"}},
        {"$group": {"_id": None, "revenue": {"$sum": "$total"}}},
    ]))
    status_counts = {
        row["_id"]: row["count"]
        for row in orders.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    }
    return {
        "totalRevenue": round(revenue[0]["revenue"], 2) if revenue else 0,
        "totalOrders": orders.count_documents({}),
        "cancelledOrders": orders.count_documents({"status": order_status.CANCELLED}),
        "paidOrders": orders.count_documents({"paymentStatus": "paid"}),
        "statusCounts": status_counts,
    }
