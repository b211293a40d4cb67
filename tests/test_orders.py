from datetime import timedelta

import pytest

import orders
from conftest import insert_order
from database import utcnow
from errors import Forbidden, NotFound, ValidationFailed

ORDER = {
    "products": [{"productId": "product-123", "name": "Test Product", "quantity": 2, "price": 99.99}],
    "totalPrice": 199.98,
    "paymentMethod": "card",
}


def test_create_order(account_client, client_user):
    response = account_client.post("/api/orders", json=ORDER, headers=client_user.headers)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending_payment"
    assert body["total_price"] == 199.98
    assert body["payment_method"] == "card"
    assert body["payment_status"] is None
    assert body["user_id"] == client_user.id
    assert body["products"] == [{"product_id": "product-123", "name": "Test Product", "quantity": 2, "price": 99.99}]


def test_create_order_accepts_snake_case(account_client, client_user):
    payload = {"products": ORDER["products"], "total_price": 199.98, "payment_method": "paypal"}
    response = account_client.post("/api/orders", json=payload, headers=client_user.headers)
    assert response.status_code == 201
    assert response.json()["payment_method"] == "paypal"


def test_create_order_reports_every_invalid_field(account_client, client_user):
    payload = {"products": [], "totalPrice": -10, "paymentMethod": "invalid"}
    response = account_client.post("/api/orders", json=payload, headers=client_user.headers)
    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["detail"]}
    assert fields == {"products", "total_price", "payment_method"}


def test_create_order_requires_token(account_client):
    response = account_client.post("/api/orders", json=ORDER)
    assert response.status_code == 401


def test_total_must_match_line_items(db, client_user):
    with pytest.raises(ValidationFailed) as exc:
        orders.create_order(db, client_user.caller, ORDER["products"], 150.00, "card")
    assert exc.value.errors[0]["field"] == "total_price"


def test_line_items_are_validated(db, client_user):
    bad = [{"product_id": "", "name": "Thing", "quantity": 0, "price": 5}]
    with pytest.raises(ValidationFailed) as exc:
        orders.create_order(db, client_user.caller, bad, 5, "card")
    fields = {e["field"] for e in exc.value.errors}
    assert fields == {"products.0.product_id", "products.0.quantity"}


def test_line_items_are_a_snapshot(db, client_user):
    products = [{"product_id": "p1", "name": "Lamp", "quantity": 1, "price": 30.0}]
    order = orders.create_order(db, client_user.caller, products, 30.0, "card")
    products[0]["price"] = 1.0
    stored = db["order"].find_one()
    assert stored["products"][0]["price"] == 30.0
    assert order["products"][0]["price"] == 30.0


def test_create_order_clears_cart(db, client_user, other_user):
    db["cartitem"].insert_many([
        {"user_id": client_user.id, "product_id": "p1", "quantity": 1},
        {"user_id": other_user.id, "product_id": "p1", "quantity": 1},
    ])
    orders.create_order(db, client_user.caller, ORDER["products"], 199.98, "card")
    assert db["cartitem"].count_documents({"user_id": client_user.id}) == 0
    assert db["cartitem"].count_documents({"user_id": other_user.id}) == 1


def test_list_orders_only_returns_own_newest_first(account_client, db, client_user, other_user):
    now = utcnow()
    older = insert_order(db, client_user.id, 50, created_at=now - timedelta(hours=1))
    newer = insert_order(db, client_user.id, 75, created_at=now)
    insert_order(db, other_user.id, 20)

    response = account_client.get("/api/orders", headers=client_user.headers)
    assert response.status_code == 200
    assert [o["id"] for o in response.json()] == [newer, older]


def test_owner_can_fetch_order(account_client, db, client_user):
    order_id = insert_order(db, client_user.id)
    response = account_client.get(f"/api/orders/{order_id}", headers=client_user.headers)
    assert response.status_code == 200
    assert response.json()["id"] == order_id


def test_foreign_order_is_not_found(account_client, db, client_user, other_user):
    order_id = insert_order(db, other_user.id)
    response = account_client.get(f"/api/orders/{order_id}", headers=client_user.headers)
    assert response.status_code == 404
    assert response.json()["detail"] == "Order not found"


def test_admin_can_fetch_any_order(db, admin_user, client_user):
    order_id = insert_order(db, client_user.id)
    assert orders.get_order(db, admin_user.caller, order_id)["id"] == order_id


def test_admin_lists_all_orders_with_email(account_client, db, admin_user, client_user, other_user):
    now = utcnow()
    insert_order(db, client_user.id, created_at=now - timedelta(minutes=5))
    insert_order(db, other_user.id, created_at=now)

    response = account_client.get("/api/admin/orders", headers=admin_user.headers)
    assert response.status_code == 200
    assert [o["user_email"] for o in response.json()] == ["other@test.com", "test@test.com"]


def test_client_cannot_list_all_orders(account_client, client_user):
    response = account_client.get("/api/admin/orders", headers=client_user.headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required"


def test_admin_updates_status(account_client, db, admin_user, client_user):
    order_id = insert_order(db, client_user.id, status="processing")
    response = account_client.patch(f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=admin_user.headers)
    assert response.status_code == 200
    assert response.json()["status"] == "shipped"


def test_any_status_can_follow_any_other(db, admin_user, client_user):
    order_id = insert_order(db, client_user.id, status="delivered")
    assert orders.update_status(db, admin_user.caller, order_id, "pending_payment")["status"] == "pending_payment"


def test_non_admin_cannot_update_status(account_client, db, client_user):
    order_id = insert_order(db, client_user.id)
    response = account_client.patch(f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=client_user.headers)
    assert response.status_code == 403
    assert response.json()["detail"] == "Admin access required"
    assert db["order"].find_one()["status"] == "pending_payment"


def test_invalid_status_rejected(account_client, db, admin_user, client_user):
    order_id = insert_order(db, client_user.id)
    response = account_client.patch(f"/api/orders/{order_id}/status", json={"status": "lost"}, headers=admin_user.headers)
    assert response.status_code == 400
    assert response.json()["detail"][0]["field"] == "status"


def test_missing_order_status_update_is_not_found(account_client, admin_user):
    for order_id in ("64b7f0c2a1b2c3d4e5f60718", "not-an-id"):
        response = account_client.patch(f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=admin_user.headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Order not found"


def test_role_is_checked_before_existence(db, client_user):
    with pytest.raises(Forbidden):
        orders.update_status(db, client_user.caller, "64b7f0c2a1b2c3d4e5f60718", "shipped")
    with pytest.raises(NotFound):
        orders.get_order(db, client_user.caller, "64b7f0c2a1b2c3d4e5f60718")


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_total_is_rejected(account_client, db, client_user, literal):
    body = ('{"products": [{"productId": "product-123", "name": "Test Product", "quantity": 2, "price": 99.99}],'
            ' "totalPrice": %s, "paymentMethod": "card"}' % literal)
    response = account_client.post(
        "/api/orders", content=body,
        headers={**client_user.headers, "Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert [e["field"] for e in response.json()["detail"]] == ["total_price"]
    assert db["order"].count_documents({}) == 0


def test_non_finite_line_item_price_is_rejected(db, client_user):
    bad = [{"product_id": "p1", "name": "Thing", "quantity": 1, "price": float("nan")}]
    with pytest.raises(ValidationFailed) as exc:
        orders.create_order(db, client_user.caller, bad, 5, "card")
    assert [e["field"] for e in exc.value.errors] == ["products.0.price"]
