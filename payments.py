"""
Mock payment processing

Payments are simulated: no processor is called, the gateway response is a
fixed mock payload. Recording the payment and marking the order paid happen
in one UnitOfWork so a failure between the two leaves neither behind.
"""
import uuid
import logging
from typing import Any, Dict, List

from pymongo.database import Database

from auth import Caller, require_admin
from database import UnitOfWork, parse_oid, serialize, utcnow
from errors import BadRequest, NotFound, ValidationFailed
from orders import ORDER_NOT_FOUND, is_number
from schemas import PAYMENT_METHODS, Payment

logger = logging.getLogger(__name__)

GATEWAY_NAME = "mock_payment_gateway"
GATEWAY_FEE_RATE = 0.029
CURRENCY = "usd"


def new_transaction_id(prefix: str = "txn") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def gateway_response(amount: float) -> Dict[str, Any]:
    return {
        "gateway": GATEWAY_NAME,
        "status": "success",
        "fee": round(amount * GATEWAY_FEE_RATE, 2),
        "currency": CURRENCY,
    }


def validate_payment(order_id: Any, amount: Any, method: Any) -> None:
    errors: List[Dict[str, str]] = []
    if not isinstance(order_id, str) or not order_id.strip():
        errors.append({"field": "order_id", "message": "Order ID is required"})
    if not is_number(amount) or amount <= 0:
        errors.append({"field": "amount", "message": "Amount must be a positive number"})
    if method not in PAYMENT_METHODS:
        errors.append({"field": "method", "message": "Invalid payment method"})
    if errors:
        raise ValidationFailed(errors)


def process_payment(db: Database, caller: Caller, order_id: Any, amount: Any, method: Any) -> dict:
    validate_payment(order_id, amount, method)

    # Restricting on user_id makes a foreign order look exactly like a missing one
    oid = parse_oid(order_id)
    order = db["order"].find_one({"_id": oid, "user_id": caller.id}) if oid else None
    if not order:
        raise NotFound(ORDER_NOT_FOUND)
    if order.get("payment_status") == "completed":
        raise BadRequest("Order already paid")

    transaction_id = new_transaction_id()
    payment = Payment(
        order_id=str(oid),
        amount=float(amount),
        method=method,
        status="completed",
        transaction_id=transaction_id,
        gateway_response=gateway_response(float(amount)),
    )

    with UnitOfWork(db) as uow:
        payment_id = uow.insert("payment", payment)
        paid = uow.update("order", {"_id": oid, "user_id": caller.id, "payment_status": {"$ne": "completed"}}, {"$set": {
            "payment_status": "completed",
            "transaction_id": transaction_id,
            "status": "processing",
            "updated_at": utcnow(),
        }})
        if paid is None:
            # paid by a concurrent request after the check above
            raise BadRequest("Order already paid")

    logger.info("Payment %s completed for order %s (%.2f via %s)", transaction_id, order_id, float(amount), method)
    return serialize(db["payment"].find_one({"_id": parse_oid(payment_id)}))


def get_payment(db: Database, caller: Caller, payment_id: str) -> dict:
    oid = parse_oid(payment_id)
    payment = db["payment"].find_one({"_id": oid}) if oid else None
    if payment and caller.role != "admin":
        order_oid = parse_oid(payment.get("order_id"))
        if not db["order"].find_one({"_id": order_oid, "user_id": caller.id}):
            payment = None
    if not payment:
        raise NotFound("Payment not found")
    return serialize(payment)


def refund_payment(db: Database, caller: Caller, payment_id: str) -> dict:
    """Mark a payment refunded. The owning order keeps its status."""
    require_admin(caller)

    oid = parse_oid(payment_id)
    payment = db["payment"].find_one({"_id": oid}) if oid else None
    if not payment:
        raise NotFound("Payment not found")
    if payment.get("status") == "refunded":
        raise BadRequest("Payment already refunded")

    refund_id = new_transaction_id("rfnd")
    refund = {"id": refund_id, "amount": payment["amount"], "refunded_at": utcnow().isoformat()}
    response = dict(payment.get("gateway_response") or {})
    response["refunds"] = list(response.get("refunds", [])) + [refund]
    db["payment"].update_one({"_id": oid}, {"$set": {
        "status": "refunded",
        "gateway_response": response,
        "updated_at": utcnow(),
    }})
    logger.info("Payment %s refunded as %s by %s", payment.get("transaction_id"), refund_id, caller.id)
    return {"refund_id": refund_id, "payment": serialize(db["payment"].find_one({"_id": oid}))}
