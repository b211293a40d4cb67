"""
Coupon evaluation

``evaluate_coupon`` is pure: it decides whether a stored coupon applies to an
order total at a given instant and computes the discount. ``apply_coupon``
wraps it with the lookup and the use-count increment.
"""
import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from pymongo.database import Database

from database import as_utc, utcnow
from errors import BadRequest, NotFound, ValidationFailed
from orders import is_number

logger = logging.getLogger(__name__)

INVALID_COUPON = "Invalid or expired coupon"
MIN_ORDER_NOT_MET = "Minimum order amount not met"

# attempts at the used_count compare-and-set before giving up
APPLY_ATTEMPTS = 3

PUBLIC_FIELDS = ("code", "discount_type", "discount_value", "min_order_amount", "max_discount")


class CouponResult(BaseModel):
    discount: float
    total_after_discount: float


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def is_redeemable(coupon: dict, now: datetime) -> bool:
    if not coupon.get("is_active", False):
        return False
    valid_from = coupon.get("valid_from")
    valid_until = coupon.get("valid_until")
    if valid_from is not None and as_utc(valid_from) > now:
        return False
    if valid_until is None or as_utc(valid_until) < now:
        return False
    usage_limit = coupon.get("usage_limit")
    if usage_limit is not None and coupon.get("used_count", 0) >= usage_limit:
        return False
    return True


def evaluate_coupon(coupon: Optional[dict], total: float, now: Optional[datetime] = None) -> CouponResult:
    if not is_number(total) or total <= 0:
        raise ValidationFailed([{"field": "total", "message": "Total must be a positive number"}])
    now = as_utc(now) if now else utcnow()
    if not coupon or not is_redeemable(coupon, now):
        raise NotFound(INVALID_COUPON)

    if total < (coupon.get("min_order_amount") or 0):
        raise BadRequest(MIN_ORDER_NOT_MET)

    value = float(coupon["discount_value"])
    if coupon["discount_type"] == "percentage":
        discount = total * value / 100
    else:
        discount = value

    max_discount = coupon.get("max_discount")
    if max_discount is not None:
        discount = min(discount, float(max_discount))

    return CouponResult(
        discount=round(discount, 2),
        total_after_discount=round(total - discount, 2),
    )


def apply_coupon(db: Database, code: str, total: float, now: Optional[datetime] = None) -> CouponResult:
    """Evaluate ``code`` against ``total`` and count one use of the coupon.

    The increment only lands if ``used_count`` still holds the value that was
    evaluated, so concurrent applications cannot push it past ``usage_limit``.
    """
    now = as_utc(now) if now else utcnow()
    code = normalize_code(code)
    for _ in range(APPLY_ATTEMPTS):
        coupon = db["coupon"].find_one({"code": code, "is_active": True})
        result = evaluate_coupon(coupon, total, now)
        seen = {"$exists": False} if "used_count" not in coupon else coupon["used_count"]
        res = db["coupon"].update_one(
            {"_id": coupon["_id"], "used_count": seen},
            {"$inc": {"used_count": 1}, "$set": {"updated_at": utcnow()}},
        )
        if res.modified_count == 1:
            logger.info("Coupon %s applied: discount %.2f on %.2f", code, result.discount, total)
            return result
        logger.info("Coupon %s use count changed concurrently, retrying", code)
    raise NotFound(INVALID_COUPON)


def list_active_coupons(db: Database, now: Optional[datetime] = None) -> List[dict]:
    now = as_utc(now) if now else utcnow()
    coupons = []
    for c in db["coupon"].find({"is_active": True}).sort([("created_at", -1)]):
        if c.get("valid_until") is None:
            continue
        valid_from = c.get("valid_from")
        if (valid_from is None or as_utc(valid_from) <= now) and as_utc(c["valid_until"]) >= now:
            coupons.append({k: c.get(k) for k in PUBLIC_FIELDS})
    return coupons
