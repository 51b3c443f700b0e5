"""Pytest fixtures for storefront tests."""

from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient


@pytest.fixture
def mongo_client(monkeypatch):
    """In-memory MongoDB; mongomock has no sessions so transactions are off."""
    from app.core import config
    from app.db import mongo

    client = mongomock.MongoClient()
    monkeypatch.setattr(mongo, "client", client)
    monkeypatch.setattr(config, "MONGO_TRANSACTIONS", False)
    return client


@pytest.fixture
def db(mongo_client):
    from app.db.mongo import get_db

    return get_db()


@pytest.fixture
def make_user(db):
    def _make(role="user", name="Test User", email=None):
        user = {
            "_id": ObjectId(),
            "name": name,
            "email": email or f"{ObjectId()}@example.com",
            "password": "not-a-real-hash",
            "role": role,
            "orders": [],
        }
        db.users.insert_one(user)
        return user

    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Widget", price=10.0, quantity=5, **fields):
        product = {
            "_id": ObjectId(),
            "name": name,
            "price": price,
            "quantity": quantity,
            "sold": 0,
            "salesCount": 0,
            "image": f"https://cdn.example.com/{name.lower()}.png",
            "variants": [],
            "salesHistory": [],
            "status": True,
            "featured": False,
            "createdAt": datetime.now(timezone.utc),
        }
        product.update(fields)
        db.products.insert_one(product)
        return product

    return _make


@pytest.fixture
def address():
    return {
        "name": "Jane Doe",
        "email": "Jane@Example.com",
        "street": "1 Main St",
        "city": "Springfield",
        "zip": "12345",
    }


@pytest.fixture
def place_order(make_user, address):
    """Create an order through checkout and return (order, user)."""
    from app.services.orders_service import create_order

    def _place(product, quantity=1, user=None):
        user = user or make_user()
        order = create_order(
            user["_id"], [{"product": str(product["_id"]), "quantity": quantity}], address, "cod"
        )
        return order, user

    return _place


@pytest.fixture
def set_status(db):
    def _set(order_id, status):
        db.orders.update_one({"_id": order_id}, {"$set": {"status": status}})

    return _set


@pytest.fixture
def api_client(mongo_client):
    from app.main import app

    return TestClient(app)


@pytest.fixture
def auth_headers():
    from app.core.security import create_token

    def _headers(user):
        return {"Authorization": f"Bearer {create_token(str(user['_id']), user.get('role', 'user'))}"}

    return _headers
