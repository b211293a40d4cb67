"""
Catalog: products, categories and the coupon admin side.
"""
import re
import logging
from typing import Any, Dict, List

from pymongo.database import Database

from coupons import normalize_code
from database import as_utc, create_document, get_documents, parse_oid, serialize, utcnow
from errors import BadRequest, NotFound
from schemas import Category, Coupon, Product

logger = logging.getLogger(__name__)


def _find(db: Database, collection: str, doc_id: str, missing: str) -> dict:
    oid = parse_oid(doc_id)
    doc = db[collection].find_one({"_id": oid}) if oid else None
    if not doc:
        raise NotFound(missing)
    return doc


def _update(db: Database, collection: str, doc_id: str, update: Dict[str, Any], missing: str) -> dict:
    doc = _find(db, collection, doc_id, missing)
    if update:
        update["updated_at"] = utcnow()
        db[collection].update_one({"_id": doc["_id"]}, {"$set": update})
    return serialize(db[collection].find_one({"_id": doc["_id"]}))


# Products

def list_products(db: Database, category_id: str = None) -> List[dict]:
    query = {"category_id": category_id} if category_id else {}
    return [serialize(p) for p in db["product"].find(query).sort([("created_at", -1)])]


def get_product(db: Database, product_id: str) -> dict:
    return serialize(_find(db, "product", product_id, "Product not found"))


def create_product(db: Database, product: Product) -> dict:
    product_id = create_document(db, "product", product)
    return serialize(db["product"].find_one({"_id": parse_oid(product_id)}))


def update_product(db: Database, product_id: str, update: Dict[str, Any]) -> dict:
    return _update(db, "product", product_id, update, "Product not found")


def delete_product(db: Database, product_id: str) -> None:
    doc = _find(db, "product", product_id, "Product not found")
    db["product"].delete_one({"_id": doc["_id"]})


# Categories

def slugify(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "-", name.strip().lower())


def list_categories(db: Database) -> List[dict]:
    return [serialize(c) for c in get_documents(db, "category", {"is_active": True}, sort=[("name", 1)])]


def create_category(db: Database, name: str, description: str = None) -> dict:
    slug = slugify(name)
    if db["category"].find_one({"slug": slug}):
        raise BadRequest("Category already exists")
    category_id = create_document(db, "category", Category(name=name.strip(), description=description, slug=slug))
    return serialize(db["category"].find_one({"_id": parse_oid(category_id)}))


def update_category(db: Database, category_id: str, update: Dict[str, Any]) -> dict:
    if "name" in update and "slug" not in update:
        update["slug"] = slugify(update["name"])
    return _update(db, "category", category_id, update, "Category not found")


def delete_category(db: Database, category_id: str) -> None:
    # Categories are deactivated, products may still point at them
    _update(db, "category", category_id, {"is_active": False}, "Category not found")


# Coupons (admin)

def list_coupons(db: Database) -> List[dict]:
    return [serialize(c) for c in get_documents(db, "coupon", sort=[("created_at", -1)])]


def create_coupon(db: Database, coupon: Coupon) -> dict:
    coupon.code = normalize_code(coupon.code)
    if not coupon.code:
        raise BadRequest("Code is required")
    if db["coupon"].find_one({"code": coupon.code}):
        raise BadRequest("Coupon code already exists")
    coupon.valid_from = as_utc(coupon.valid_from) if coupon.valid_from else utcnow()
    coupon.valid_until = as_utc(coupon.valid_until)
    coupon.used_count = 0
    coupon_id = create_document(db, "coupon", coupon)
    logger.info("Coupon %s created", coupon.code)
    return serialize(db["coupon"].find_one({"_id": parse_oid(coupon_id)}))


def update_coupon(db: Database, coupon_id: str, update: Dict[str, Any]) -> dict:
    if "code" in update:
        update["code"] = normalize_code(update["code"])
        if not update["code"]:
            raise BadRequest("Code is required")
        clash = db["coupon"].find_one({"code": update["code"]})
        if clash and str(clash["_id"]) != coupon_id:
            raise BadRequest("Coupon code already exists")
    return _update(db, "coupon", coupon_id, update, "Coupon not found")


def delete_coupon(db: Database, coupon_id: str) -> None:
    doc = _find(db, "coupon", coupon_id, "Coupon not found")
    db["coupon"].delete_one({"_id": doc["_id"]})
