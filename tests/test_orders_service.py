"""Tests for order creation, status transitions and owner cancellation."""

import itertools
import threading

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from app.core.errors import (
    InsufficientStockError,
    InvalidInputError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
)
from app.services import order_status, orders_service
from app.services.orders_service import cancel_order, create_order, update_status


def _item(product, quantity, **extra):
    return {"product": str(product["_id"]), "quantity": quantity, **extra}


class TestCreateOrder:
    def test_single_item_scenario(self, db, make_user, make_product, address):
        user = make_user()
        p1 = make_product(price=10, quantity=5)

        order = create_order(user["_id"], [_item(p1, 2)], address, "credit_card")

        assert order["total"] == 20.00
        assert order["status"] == "pending"
        assert db.products.find_one({"_id": p1["_id"]})["quantity"] == 3
        stored = db.orders.find_one({"_id": order["_id"]})
        assert stored["total"] == 20.00
        assert stored["status"] == "pending"

    def test_total_is_exact_sum(self, db, make_user, make_product, address):
        user = make_user()
        a = make_product(name="A", price=19.99, quantity=10)
        b = make_product(name="B", price=0.1, quantity=10)

        order = create_order(user["_id"], [_item(a, 3), _item(b, 2)], address)

        assert order["total"] == 60.17

    def test_decrements_stock_and_records_sale(self, db, make_user, make_product, address):
        user = make_user()
        a = make_product(name="A", price=5, quantity=10)
        b = make_product(name="B", price=7, quantity=4)

        order = create_order(user["_id"], [_item(a, 3), _item(b, 4)], address)

        stored_a = db.products.find_one({"_id": a["_id"]})
        stored_b = db.products.find_one({"_id": b["_id"]})
        assert (stored_a["quantity"], stored_a["sold"], stored_a["salesCount"]) == (7, 3, 3)
        assert (stored_b["quantity"], stored_b["sold"], stored_b["salesCount"]) == (0, 4, 4)
        assert stored_b["salesHistory"][0]["quantity"] == 4
        assert stored_b["salesHistory"][0]["revenue"] == 28
        assert stored_b["salesHistory"][0]["orderId"] == order["_id"]
        assert order["salesRecordedAt"] is not None

    def test_line_items_snapshot_product(self, make_user, make_product, address):
        user = make_user()
        p = make_product(name="Lamp", price=42.5, quantity=3)

        order = create_order(user["_id"], [_item(p, 1)], address)

        assert order["items"] == [{
            "product": p["_id"],
            "name": "Lamp",
            "price": 42.5,
            "quantity": 1,
            "image": p["image"],
        }]

    def test_appends_order_to_user(self, db, make_user, make_product, address):
        user = make_user()
        p = make_product()

        order = create_order(user["_id"], [_item(p, 1)], address)

        assert db.users.find_one({"_id": user["_id"]})["orders"] == [order["_id"]]

    def test_client_price_is_trusted(self, make_user, make_product, address):
        user = make_user()
        p = make_product(price=100, quantity=5)

        order = create_order(user["_id"], [_item(p, 2, price=1.5)], address)

        assert order["items"][0]["price"] == 1.5
        assert order["total"] == 3.0

    def test_accepts_legacy_id_key(self, make_user, make_product, address):
        user = make_user()
        p = make_product()

        order = create_order(user["_id"], [{"_id": str(p["_id"]), "quantity": 1}], address)

        assert order["items"][0]["product"] == p["_id"]

    def test_initial_history_entry(self, make_user, make_product, address):
        user = make_user()
        order = create_order(user["_id"], [_item(make_product(), 1)], address)

        assert [h["status"] for h in order["statusHistory"]] == ["pending"]

    def test_shipping_email_is_normalised(self, make_user, make_product, address):
        user = make_user()
        order = create_order(user["_id"], [_item(make_product(), 1)], address)

        assert order["shippingAddress"]["email"] == "jane@example.com"
        assert order["shippingAddress"]["country"] == "United States"


class TestCreateOrderFailures:
    def test_insufficient_stock_leaves_everything_unchanged(self, db, make_user, make_product, address):
        user = make_user()
        a = make_product(name="A", quantity=10)
        b = make_product(name="B", quantity=1)

        with pytest.raises(InsufficientStockError) as exc_info:
            create_order(user["_id"], [_item(a, 2), _item(b, 2)], address)

        assert exc_info.value.available == 1
        assert exc_info.value.requested == 2
        assert db.products.find_one({"_id": a["_id"]})["quantity"] == 10
        assert db.products.find_one({"_id": b["_id"]})["quantity"] == 1
        assert db.orders.count_documents({}) == 0
        assert db.users.find_one({"_id": user["_id"]})["orders"] == []

    def test_repeated_product_lines_are_summed(self, db, make_user, make_product, address):
        user = make_user()
        p = make_product(quantity=3)

        with pytest.raises(InsufficientStockError) as exc_info:
            create_order(user["_id"], [_item(p, 2), _item(p, 2)], address)

        assert exc_info.value.requested == 4
        assert db.products.find_one({"_id": p["_id"]})["quantity"] == 3

    def test_unknown_product(self, db, make_user, make_product, address):
        user = make_user()
        p = make_product(quantity=5)
        missing = str(ObjectId())

        with pytest.raises(NotFoundError, match="Product not found"):
            create_order(user["_id"], [_item(p, 1), {"product": missing, "quantity": 1}], address)

        assert db.products.find_one({"_id": p["_id"]})["quantity"] == 5

    def test_malformed_product_id(self, make_user, address):
        with pytest.raises(NotFoundError):
            create_order(make_user()["_id"], [{"product": "not-an-id", "quantity": 1}], address)

    def test_unknown_user_rolls_back_stock(self, db, make_product, address):
        p = make_product(quantity=5)

        with pytest.raises(NotFoundError, match="User not found"):
            create_order(ObjectId(), [_item(p, 2)], address)

        stored = db.products.find_one({"_id": p["_id"]})
        assert (stored["quantity"], stored["sold"], stored["salesCount"]) == (5, 0, 0)
        assert stored["salesHistory"] == []
        assert db.orders.count_documents({}) == 0

    @pytest.mark.parametrize("items", [[], None])
    def test_empty_cart(self, make_user, address, items):
        with pytest.raises(InvalidInputError, match="at least one item"):
            create_order(make_user()["_id"], items, address)

    def test_item_without_product_id(self, make_user, address):
        with pytest.raises(InvalidInputError, match="product ID"):
            create_order(make_user()["_id"], [{"quantity": 1}], address)

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_quantity(self, db, make_user, make_product, address, quantity):
        p = make_product()
        with pytest.raises(InvalidInputError, match="Invalid quantity"):
            create_order(make_user()["_id"], [_item(p, quantity)], address)
        assert db.products.find_one({"_id": p["_id"]})["quantity"] == 5

    @pytest.mark.parametrize("field", ["name", "email", "street", "city", "zip"])
    def test_missing_address_field(self, make_user, make_product, address, field):
        del address[field]
        with pytest.raises(InvalidInputError, match=f"Missing shipping address field: {field}"):
            create_order(make_user()["_id"], [_item(make_product(), 1)], address)

    def test_blank_address_field_counts_as_missing(self, make_user, make_product, address):
        address["city"] = "   "
        with pytest.raises(InvalidInputError, match="Missing shipping address field: city"):
            create_order(make_user()["_id"], [_item(make_product(), 1)], address)

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_blank_or_null_email_counts_as_missing(self, make_user, make_product, address, value):
        address["email"] = value
        with pytest.raises(InvalidInputError, match="Missing shipping address field: email") as exc:
            create_order(make_user()["_id"], [_item(make_product(), 1)], address)
        assert exc.value.details["field"] == "shippingAddress.email"

    def test_null_address_field_counts_as_missing(self, make_user, make_product, address):
        address["street"] = None
        with pytest.raises(InvalidInputError, match="Missing shipping address field: street"):
            create_order(make_user()["_id"], [_item(make_product(), 1)], address)

    def test_invalid_email(self, make_user, make_product, address):
        address["email"] = "jane@example"
        with pytest.raises(InvalidInputError, match="Invalid email address format"):
            create_order(make_user()["_id"], [_item(make_product(), 1)], address)

    def test_invalid_payment_method(self, make_user, make_product, address):
        with pytest.raises(InvalidInputError, match="payment method"):
            create_order(make_user()["_id"], [_item(make_product(), 1)], address, "bitcoin")


class TestConcurrentReservations:
    def test_last_unit_sold_once(self, db, make_user, make_product, address):
        p = make_product(quantity=1)
        users = [make_user(), make_user()]
        barrier = threading.Barrier(len(users))
        outcomes = []

        def buy(user):
            barrier.wait()
            try:
                create_order(user["_id"], [_item(p, 1)], address)
                outcomes.append("ok")
            except InsufficientStockError:
                outcomes.append("insufficient")

        threads = [threading.Thread(target=buy, args=(u,)) for u in users]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["insufficient", "ok"]
        assert db.products.find_one({"_id": p["_id"]})["quantity"] == 0
        assert db.orders.count_documents({}) == 1


class TestUpdateStatus:
    @pytest.mark.parametrize("current,new", sorted(
        (s, t) for s in order_status.STATUSES for t in order_status.allowed_transitions(s)
    ))
    def test_allowed_transition_appends_one_entry(self, db, make_product, place_order, set_status, current, new):
        order, _ = place_order(make_product())
        set_status(order["_id"], current)
        before = len(db.orders.find_one({"_id": order["_id"]})["statusHistory"])

        change = update_status(order["_id"], new, "admin-1")

        stored = db.orders.find_one({"_id": order["_id"]})
        assert stored["status"] == new
        assert len(stored["statusHistory"]) == before + 1
        entry = stored["statusHistory"][-1]
        assert entry["status"] == new
        assert entry["previousStatus"] == current
        assert entry["changedBy"] == "admin-1"
        assert change.order["status"] == new

    @pytest.mark.parametrize("current,new", sorted(
        (s, t) for s, t in itertools.product(order_status.STATUSES, repeat=2)
        if not order_status.can_transition(s, t)
    ))
    def test_disallowed_transition_is_rejected(self, db, make_product, place_order, set_status, current, new):
        order, _ = place_order(make_product())
        set_status(order["_id"], current)
        before = db.orders.find_one({"_id": order["_id"]})

        with pytest.raises(InvalidTransitionError) as exc_info:
            update_status(order["_id"], new, "admin-1")

        assert exc_info.value.allowed == order_status.allowed_transitions(current)
        after = db.orders.find_one({"_id": order["_id"]})
        assert after["status"] == current
        assert after["statusHistory"] == before["statusHistory"]

    def test_delivered_to_processing_fails(self, db, make_product, place_order, set_status):
        order, _ = place_order(make_product())
        set_status(order["_id"], "delivered")

        with pytest.raises(InvalidTransitionError) as exc_info:
            update_status(order["_id"], "processing", "admin-1")

        assert exc_info.value.current == "delivered"
        assert exc_info.value.attempted == "processing"
        assert exc_info.value.allowed == ["completed"]
        assert db.orders.find_one({"_id": order["_id"]})["status"] == "delivered"

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            update_status(ObjectId(), "processing", "admin-1")

    def test_unknown_status_value(self, make_product, place_order):
        order, _ = place_order(make_product())
        with pytest.raises(InvalidInputError):
            update_status(order["_id"], "lost", "admin-1")

    def test_actor_id_stored_as_object_id(self, db, make_product, place_order, make_user):
        admin = make_user(role="admin")
        order, _ = place_order(make_product())

        update_status(order["_id"], "processing", str(admin["_id"]), note="packing")

        entry = db.orders.find_one({"_id": order["_id"]})["statusHistory"][-1]
        assert entry["changedBy"] == admin["_id"]
        assert entry["note"] == "packing"

    def test_delivery_stamps_date_and_tracking(self, db, make_product, place_order, set_status):
        order, _ = place_order(make_product())
        set_status(order["_id"], "shipped")

        update_status(order["_id"], "delivered", "admin-1", tracking_number="TRK-1", payment_status="paid")

        stored = db.orders.find_one({"_id": order["_id"]})
        assert stored["deliveryDate"] is not None
        assert stored["trackingNumber"] == "TRK-1"
        assert stored["paymentStatus"] == "paid"

    def test_completing_checkout_order_does_not_recount(self, db, make_product, place_order):
        p = make_product(quantity=5)
        order, _ = place_order(p, quantity=2)

        change = update_status(order["_id"], "completed", "admin-1")

        assert change.sales_recorded is True
        assert change.already_recorded is True
        assert change.sales_error is None
        stored = db.products.find_one({"_id": p["_id"]})
        assert (stored["quantity"], stored["sold"], stored["salesCount"]) == (3, 2, 2)
        assert len(stored["salesHistory"]) == 1

    def test_completing_unrecorded_order_records_once(self, db, make_product, place_order, set_status):
        p = make_product(quantity=5)
        order, _ = place_order(p, quantity=1)
        db.orders.update_one({"_id": order["_id"]}, {"$set": {"salesRecordedAt": None}})
        set_status(order["_id"], "delivered")

        change = update_status(order["_id"], "completed", "admin-1")

        assert change.sales_recorded is True
        assert change.already_recorded is False
        assert change.order["salesRecordedAt"] is not None
        stored = db.products.find_one({"_id": p["_id"]})
        assert (stored["quantity"], stored["sold"]) == (3, 2)

    def test_sales_failure_keeps_completed_status(self, db, make_product, place_order, monkeypatch):
        order, _ = place_order(make_product())

        def boom(order_id):
            raise ServerSelectionTimeoutError("store unavailable")

        monkeypatch.setattr(orders_service.sales_service, "record_sale", boom)
        change = update_status(order["_id"], "completed", "admin-1")

        assert change.sales_recorded is False
        assert change.already_recorded is False
        assert "store unavailable" in change.sales_error
        assert db.orders.find_one({"_id": order["_id"]})["status"] == "completed"

    def test_stale_status_is_reread(self, db, make_product, place_order, monkeypatch):
        order, _ = place_order(make_product())
        real_apply = orders_service._apply_transition
        calls = []

        def racing_apply(orders, oid, current, new, *args, **kwargs):
            if not calls:
                # a concurrent admin starts processing between read and write
                orders.update_one({"_id": oid}, {"$set": {"status": "processing"}})
            calls.append(current)
            return real_apply(orders, oid, current, new, *args, **kwargs)

        monkeypatch.setattr(orders_service, "_apply_transition", racing_apply)

        update_status(order["_id"], "shipped", "admin-1")

        assert calls == ["pending", "processing"]
        stored = db.orders.find_one({"_id": order["_id"]})
        assert stored["status"] == "shipped"
        assert stored["statusHistory"][-1]["previousStatus"] == "processing"

    def test_stale_read_rechecks_the_table(self, db, make_product, place_order, monkeypatch):
        order, _ = place_order(make_product())
        real_apply = orders_service._apply_transition

        def racing_apply(orders, oid, current, new, *args, **kwargs):
            orders.update_one({"_id": oid}, {"$set": {"status": "cancelled"}})
            return real_apply(orders, oid, current, new, *args, **kwargs)

        monkeypatch.setattr(orders_service, "_apply_transition", racing_apply)

        with pytest.raises(InvalidTransitionError):
            update_status(order["_id"], "processing", "admin-1")
        assert db.orders.find_one({"_id": order["_id"]})["status"] == "cancelled"


class TestCancelOrder:
    def test_owner_cancels(self, db, make_product, place_order):
        order, user = place_order(make_product())

        change = cancel_order(order["_id"], str(user["_id"]), reason="changed my mind")

        assert change.changed is True
        stored = db.orders.find_one({"_id": order["_id"]})
        assert stored["status"] == "cancelled"
        assert stored["cancellation"]["reason"] == "changed my mind"
        assert stored["cancellation"]["initiatedBy"] == user["_id"]
        assert stored["statusHistory"][-1]["previousStatus"] == "pending"

    def test_owner_cancels_from_shipped(self, db, make_product, place_order, set_status):
        order, user = place_order(make_product())
        set_status(order["_id"], "shipped")

        cancel_order(order["_id"], user["_id"])

        assert db.orders.find_one({"_id": order["_id"]})["status"] == "cancelled"

    def test_non_owner_rejected(self, db, make_product, place_order, make_user):
        order, _ = place_order(make_product())
        stranger = make_user()

        with pytest.raises(NotAuthorizedError):
            cancel_order(order["_id"], stranger["_id"])
        assert db.orders.find_one({"_id": order["_id"]})["status"] == "pending"

    def test_already_cancelled_is_noop(self, db, make_product, place_order):
        order, user = place_order(make_product())
        cancel_order(order["_id"], user["_id"])
        history = db.orders.find_one({"_id": order["_id"]})["statusHistory"]

        change = cancel_order(order["_id"], user["_id"])

        assert change.changed is False
        assert db.orders.find_one({"_id": order["_id"]})["statusHistory"] == history

    def test_completed_order_cannot_be_cancelled(self, db, make_product, place_order, set_status):
        order, user = place_order(make_product())
        set_status(order["_id"], "completed")

        with pytest.raises(InvalidTransitionError):
            cancel_order(order["_id"], user["_id"])
        assert db.orders.find_one({"_id": order["_id"]})["status"] == "completed"

    def test_unknown_order(self, db, make_user):
        with pytest.raises(NotFoundError):
            cancel_order(ObjectId(), make_user()["_id"])


class TestQueries:
    def test_user_orders_are_scoped(self, make_product, place_order, make_user):
        p = make_product(quantity=10)
        mine, me = place_order(p)
        place_order(p)

        orders = orders_service.list_user_orders(me["_id"])

        assert [o["_id"] for o in orders] == [mine["_id"]]

    def test_list_orders_attaches_customer(self, make_product, place_order):
        order, user = place_order(make_product())

        orders = orders_service.list_orders()

        assert orders[0]["customer"] == {"id": str(user["_id"]), "name": user["name"], "email": user["email"]}

    def test_stats(self, db, make_product, place_order, set_status):
        p = make_product(price=10, quantity=10)
        paid, _ = place_order(p, quantity=2)
        cancelled, _ = place_order(p, quantity=1)
        place_order(p, quantity=1)
        db.orders.update_many({"_id": {"$in": [paid["_id"], cancelled["_id"]]}}, {"$set": {"paymentStatus": "paid"}})
        set_status(cancelled["_id"], "cancelled")

        stats = orders_service.order_stats()

        assert stats["totalRevenue"] == 20
        assert stats["totalOrders"] == 3
        assert stats["cancelledOrders"] == 1
        assert stats["paidOrders"] == 2
        assert stats["statusCounts"] == {"pending": 2, "cancelled": 1}
