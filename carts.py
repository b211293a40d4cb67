import logging
from typing import Optional, Tuple

from pymongo.database import Database

from auth import Caller
from database import create_document, get_documents, parse_oid, serialize, utcnow
from errors import NotFound
from schemas import CartItem

logger = logging.getLogger(__name__)

CART_ITEM_NOT_FOUND = "Cart item not found"


def get_cart(db: Database, caller: Caller) -> list:
    return [serialize(i) for i in get_documents(db, "cartitem", {"user_id": caller.id}, sort=[("created_at", -1)])]


def add_to_cart(db: Database, caller: Caller, product_id: str, product_name: str, price: float,
                quantity: int = 1, image_url: Optional[str] = None) -> Tuple[dict, bool]:
    """Add a product to the caller's cart. Returns the item and whether it was newly created.

    One line per product: adding a product already in the cart bumps its
    quantity and refreshes the denormalized name, price and image.
    """
    existing = db["cartitem"].find_one({"user_id": caller.id, "product_id": product_id})
    if existing:
        db["cartitem"].update_one({"_id": existing["_id"]}, {
            "$inc": {"quantity": quantity},
            "$set": {"product_name": product_name, "price": price, "image_url": image_url, "updated_at": utcnow()},
        })
        return serialize(db["cartitem"].find_one({"_id": existing["_id"]})), False

    item = CartItem(user_id=caller.id, product_id=product_id, product_name=product_name,
                    price=price, quantity=quantity, image_url=image_url)
    item_id = create_document(db, "cartitem", item)
    return serialize(db["cartitem"].find_one({"_id": parse_oid(item_id)})), True


def _owned_item(db: Database, caller: Caller, item_id: str) -> dict:
    oid = parse_oid(item_id)
    item = db["cartitem"].find_one({"_id": oid, "user_id": caller.id}) if oid else None
    if not item:
        raise NotFound(CART_ITEM_NOT_FOUND)
    return item


def update_cart_item(db: Database, caller: Caller, item_id: str, quantity: int) -> dict:
    item = _owned_item(db, caller, item_id)
    db["cartitem"].update_one({"_id": item["_id"]}, {"$set": {"quantity": quantity, "updated_at": utcnow()}})
    return serialize(db["cartitem"].find_one({"_id": item["_id"]}))


def remove_from_cart(db: Database, caller: Caller, item_id: str) -> None:
    item = _owned_item(db, caller, item_id)
    db["cartitem"].delete_one({"_id": item["_id"]})


def clear_cart(db: Database, caller: Caller) -> int:
    res = db["cartitem"].delete_many({"user_id": caller.id})
    logger.info("Cleared %d cart items for user %s", res.deleted_count, caller.id)
    return res.deleted_count
