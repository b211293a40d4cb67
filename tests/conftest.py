from datetime import timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import caller_from_user, create_identity_token
from database import get_db, utcnow


@pytest.fixture
def db():
    return mongomock.MongoClient().db


def _client(app, db):
    app.dependency_overrides[get_db] = lambda: db
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def account_client(db):
    from main import app
    yield from _client(app, db)


@pytest.fixture
def product_client(db):
    from product_service import app
    yield from _client(app, db)


def auth_headers(uid, email):
    return {"Authorization": f"Bearer {create_identity_token(uid, email)}"}


class Account:
    def __init__(self, doc):
        self.doc = doc
        self.id = str(doc["_id"])
        self.caller = caller_from_user(doc)
        self.headers = auth_headers(doc["auth_uid"], doc["email"])


def make_account(db, uid, email, role="client"):
    now = utcnow()
    res = db["user"].insert_one({"auth_uid": uid, "email": email, "role": role, "created_at": now, "updated_at": now})
    return Account(db["user"].find_one({"_id": res.inserted_id}))


@pytest.fixture
def client_user(db):
    return make_account(db, "test-uid-123", "test@test.com")


@pytest.fixture
def other_user(db):
    return make_account(db, "other-uid-456", "other@test.com")


@pytest.fixture
def admin_user(db):
    return make_account(db, "admin-uid-789", "admin@test.com", role="admin")


def insert_coupon(db, code, discount_type="percentage", discount_value=10, **fields):
    now = utcnow()
    doc = {
        "code": code,
        "discount_type": discount_type,
        "discount_value": discount_value,
        "min_order_amount": 0,
        "max_discount": None,
        "usage_limit": None,
        "used_count": 0,
        "is_active": True,
        "valid_from": now - timedelta(days=1),
        "valid_until": now + timedelta(days=30),
        "created_at": now,
        "updated_at": now,
    }
    doc.update(fields)
    db["coupon"].insert_one(doc)
    return doc


def insert_order(db, user_id, total_price=100.0, created_at=None, **fields):
    now = created_at or utcnow()
    doc = {
        "user_id": user_id,
        "products": [{"product_id": "product-123", "name": "Test Product", "quantity": 1, "price": total_price}],
        "total_price": total_price,
        "payment_method": "card",
        "status": "pending_payment",
        "payment_status": None,
        "transaction_id": None,
        "created_at": now,
        "updated_at": now,
    }
    doc.update(fields)
    res = db["order"].insert_one(doc)
    return str(res.inserted_id)
