from datetime import timedelta

import pytest

from conftest import insert_coupon
from coupons import apply_coupon, evaluate_coupon, list_active_coupons
from database import utcnow
from errors import BadRequest, NotFound, ValidationFailed


def coupon(**fields):
    now = utcnow()
    doc = {
        "code": "TEST",
        "discount_type": "percentage",
        "discount_value": 10,
        "min_order_amount": 0,
        "max_discount": None,
        "usage_limit": None,
        "used_count": 0,
        "is_active": True,
        "valid_from": now - timedelta(days=1),
        "valid_until": now + timedelta(days=1),
    }
    doc.update(fields)
    return doc


def test_percentage_coupon():
    result = evaluate_coupon(coupon(code="SAVE10", discount_value=10, min_order_amount=50), 100)
    assert result.discount == 10.00
    assert result.total_after_discount == 90.00


def test_fixed_coupon():
    result = evaluate_coupon(coupon(code="FIXED20", discount_type="fixed", discount_value=20, min_order_amount=100), 150)
    assert result.discount == 20.00
    assert result.total_after_discount == 130.00


def test_max_discount_clamps_percentage():
    result = evaluate_coupon(coupon(code="MAXDEAL", discount_value=50, max_discount=25), 100)
    assert result.discount == 25.00
    assert result.total_after_discount == 75.00


@pytest.mark.parametrize("total,value,cap", [
    (59.99, 15, None),
    (123.45, 7.5, None),
    (1000, 30, 120),
    (19.99, 33, 5),
])
def test_percentage_discount_rounded_and_clamped(total, value, cap):
    result = evaluate_coupon(coupon(discount_value=value, max_discount=cap), total)
    expected = total * value / 100
    if cap is not None:
        expected = min(expected, cap)
    assert result.discount == round(expected, 2)
    assert result.total_after_discount == round(total - expected, 2)


@pytest.mark.parametrize("value,cap,expected", [(20, None, 20), (20, 15, 15), (5, 50, 5)])
def test_fixed_discount_is_value_capped(value, cap, expected):
    result = evaluate_coupon(coupon(discount_type="fixed", discount_value=value, max_discount=cap), 200)
    assert result.discount == expected


@pytest.mark.parametrize("discount_type", ["percentage", "fixed"])
def test_minimum_order_not_met(discount_type):
    with pytest.raises(BadRequest) as exc:
        evaluate_coupon(coupon(discount_type=discount_type, min_order_amount=100), 50)
    assert exc.value.status_code == 400
    assert exc.value.detail == "Minimum order amount not met"


@pytest.mark.parametrize("fields", [
    {"used_count": 5, "usage_limit": 5},
    {"is_active": False},
    {"valid_until": utcnow() - timedelta(days=1)},
    {"valid_from": utcnow() + timedelta(days=1)},
])
def test_unusable_coupon_is_invalid_or_expired(fields):
    with pytest.raises(NotFound) as exc:
        evaluate_coupon(coupon(**fields), 100)
    assert exc.value.detail == "Invalid or expired coupon"


def test_missing_coupon_is_invalid():
    with pytest.raises(NotFound):
        evaluate_coupon(None, 100)


def test_apply_increments_used_count(db):
    insert_coupon(db, "SAVE10", discount_value=10, min_order_amount=50)
    result = apply_coupon(db, "save10", 100)
    assert result.discount == 10.00
    assert db["coupon"].find_one({"code": "SAVE10"})["used_count"] == 1


def test_apply_stops_at_usage_limit(db):
    insert_coupon(db, "ONCE", usage_limit=1)
    apply_coupon(db, "ONCE", 100)
    with pytest.raises(NotFound):
        apply_coupon(db, "ONCE", 100)
    assert db["coupon"].find_one({"code": "ONCE"})["used_count"] == 1


def test_rejected_apply_does_not_count_use(db):
    insert_coupon(db, "MIN100", min_order_amount=100)
    with pytest.raises(BadRequest):
        apply_coupon(db, "MIN100", 50)
    assert db["coupon"].find_one({"code": "MIN100"})["used_count"] == 0


def test_list_active_coupons(db):
    insert_coupon(db, "ACTIVE10")
    insert_coupon(db, "EXPIRED", valid_until=utcnow() - timedelta(days=1))
    insert_coupon(db, "OFF", is_active=False)
    coupons = list_active_coupons(db)
    assert [c["code"] for c in coupons] == ["ACTIVE10"]
    assert "used_count" not in coupons[0]


def test_apply_endpoint(product_client, db):
    insert_coupon(db, "MAXDEAL", discount_value=50, min_order_amount=100, max_discount=25)
    response = product_client.post("/api/coupons/apply", json={"code": "MAXDEAL", "total": 100})
    assert response.status_code == 200
    assert response.json() == {"discount": 25.0, "total_after_discount": 75.0}


def test_apply_endpoint_rejects_unknown_code(product_client):
    response = product_client.post("/api/coupons/apply", json={"code": "INVALID", "total": 100})
    assert response.status_code == 404
    assert response.json()["detail"] == "Invalid or expired coupon"


def test_apply_endpoint_minimum_not_met(product_client, db):
    insert_coupon(db, "MIN100", discount_value=15, min_order_amount=100)
    response = product_client.post("/api/coupons/apply", json={"code": "MIN100", "total": 50})
    assert response.status_code == 400
    assert response.json()["detail"] == "Minimum order amount not met"


def test_apply_endpoint_validates_body(product_client):
    response = product_client.post("/api/coupons/apply", json={"code": "", "total": -1})
    assert response.status_code == 400
    fields = {e["field"] for e in response.json()["detail"]}
    assert fields == {"code", "total"}


def test_zero_max_discount_caps_to_nothing():
    result = evaluate_coupon(coupon(discount_type="fixed", discount_value=20, max_discount=0), 200)
    assert result.discount == 0
    assert result.total_after_discount == 200


@pytest.mark.parametrize("total", [float("nan"), float("inf"), 0])
def test_total_must_be_finite_and_positive(total):
    with pytest.raises(ValidationFailed):
        evaluate_coupon(coupon(), total)


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_apply_endpoint_rejects_non_finite_total(product_client, db, literal):
    insert_coupon(db, "SAVE10", discount_value=10)
    response = product_client.post(
        "/api/coupons/apply",
        content='{"code": "SAVE10", "total": %s}' % literal,
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert [e["field"] for e in response.json()["detail"]] == ["total"]
    assert db["coupon"].find_one({"code": "SAVE10"})["used_count"] == 0
