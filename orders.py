"""
Order management

Orders hold an immutable snapshot of the purchased line items. Status changes
are reserved for admins; any status in ORDER_STATUSES may be set from any
other, so the lifecycle below is informational only:

    pending_payment -> processing -> shipped -> delivered
    (any) -> cancelled
"""
import math
import logging
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from auth import Caller, check_admin, require_admin
from database import create_document, get_documents, parse_oid, serialize, utcnow
from errors import NotFound, ValidationFailed
from schemas import ORDER_STATUSES, PAYMENT_METHODS, Order, OrderItem

logger = logging.getLogger(__name__)

ORDER_NOT_FOUND = "Order not found"


def is_number(value: Any) -> bool:
    """True for a finite int or float. JSON bodies may carry NaN and Infinity."""
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, int)


def _validate_line_items(products: Any, errors: List[Dict[str, str]]) -> List[OrderItem]:
    if not isinstance(products, list) or not products:
        errors.append({"field": "products", "message": "Products array cannot be empty"})
        return []

    items = []
    for i, p in enumerate(products):
        field = f"products.{i}"
        if not isinstance(p, dict):
            errors.append({"field": field, "message": "Line item must be an object"})
            continue
        product_id = p.get("product_id") or p.get("productId")
        name = p.get("name")
        quantity = p.get("quantity")
        price = p.get("price")
        bad = False
        if not product_id or not isinstance(product_id, str):
            errors.append({"field": f"{field}.product_id", "message": "Product ID is required"})
            bad = True
        if not name or not isinstance(name, str):
            errors.append({"field": f"{field}.name", "message": "Product name is required"})
            bad = True
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            errors.append({"field": f"{field}.quantity", "message": "Quantity must be at least 1"})
            bad = True
        if not is_number(price) or price < 0:
            errors.append({"field": f"{field}.price", "message": "Price must be a non-negative number"})
            bad = True
        if not bad:
            items.append(OrderItem(product_id=product_id, name=name, quantity=quantity, price=float(price)))
    return items


def validate_order(products: Any, total_price: Any, payment_method: Any) -> List[OrderItem]:
    """Return the line item snapshot or raise ValidationFailed naming every bad field."""
    errors: List[Dict[str, str]] = []
    items = _validate_line_items(products, errors)

    if not is_number(total_price) or total_price <= 0:
        errors.append({"field": "total_price", "message": "Total price must be a positive number"})
    elif items and len(items) == len(products):
        expected = round(sum(i.price * i.quantity for i in items), 2)
        if abs(expected - round(total_price, 2)) >= 0.005:
            errors.append({"field": "total_price", "message": f"Total price does not match line items ({expected:.2f})"})

    if payment_method not in PAYMENT_METHODS:
        errors.append({"field": "payment_method", "message": "Invalid payment method"})

    if errors:
        raise ValidationFailed(errors)
    return items


def create_order(db: Database, caller: Caller, products: Any, total_price: Any, payment_method: Any) -> dict:
    items = validate_order(products, total_price, payment_method)
    order = Order(
        user_id=caller.id,
        products=items,
        total_price=round(float(total_price), 2),
        payment_method=payment_method,
        status="pending_payment",
    )
    order_id = create_document(db, "order", order)
    db["cartitem"].delete_many({"user_id": caller.id})
    logger.info("Order %s created for user %s (%.2f via %s)", order_id, caller.id, order.total_price, payment_method)
    return serialize(db["order"].find_one({"_id": parse_oid(order_id)}))


def list_orders(db: Database, caller: Caller) -> List[dict]:
    return [serialize(o) for o in get_documents(db, "order", {"user_id": caller.id}, sort=[("created_at", -1)])]


def list_all_orders(db: Database, caller: Caller) -> List[dict]:
    require_admin(caller)
    emails: Dict[str, Optional[str]] = {}
    result = []
    for o in db["order"].find().sort([("created_at", -1)]):
        user_id = o.get("user_id")
        if user_id not in emails:
            oid = parse_oid(user_id)
            user = db["user"].find_one({"_id": oid}) if oid else None
            emails[user_id] = user.get("email") if user else None
        o = serialize(o)
        o["user_email"] = emails[user_id]
        result.append(o)
    return result


def get_order(db: Database, caller: Caller, order_id: str) -> dict:
    # Non-owners get the same 404 as a missing order
    oid = parse_oid(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFound(ORDER_NOT_FOUND)
    if order.get("user_id") != caller.id and not check_admin(caller).allowed:
        raise NotFound(ORDER_NOT_FOUND)
    return serialize(order)


def update_status(db: Database, caller: Caller, order_id: str, status: Any) -> dict:
    require_admin(caller)
    if status not in ORDER_STATUSES:
        raise ValidationFailed([{"field": "status", "message": "Invalid order status"}])

    oid = parse_oid(order_id)
    order = db["order"].find_one({"_id": oid}) if oid else None
    if not order:
        raise NotFound(ORDER_NOT_FOUND)

    db["order"].update_one({"_id": oid}, {"$set": {"status": status, "updated_at": utcnow()}})
    logger.info("Order %s status %s -> %s by %s", order_id, order.get("status"), status, caller.id)
    return serialize(db["order"].find_one({"_id": oid}))
