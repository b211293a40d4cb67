import logging
from typing import List

from pymongo.database import Database

from auth import Caller, Identity, require_admin
from database import create_document, parse_oid, serialize, utcnow
from errors import NotFound
from schemas import User

logger = logging.getLogger(__name__)


def sync_user(db: Database, identity: Identity) -> dict:
    """Link the identity to a local user, creating a client account on first sight.

    A user already registered under the same email is re-linked to the new
    auth uid instead of duplicated.
    """
    email = identity.email.lower()
    user = db["user"].find_one({"auth_uid": identity.uid})
    if not user:
        existing = db["user"].find_one({"email": email})
        if existing:
            db["user"].update_one(
                {"_id": existing["_id"]},
                {"$set": {"auth_uid": identity.uid, "updated_at": utcnow()}},
            )
            user = db["user"].find_one({"_id": existing["_id"]})
            logger.info("Re-linked user %s to auth uid %s", user["_id"], identity.uid)
        else:
            user_id = create_document(db, "user", User(auth_uid=identity.uid, email=email, role="client"))
            user = db["user"].find_one({"_id": parse_oid(user_id)})
            logger.info("Created user %s for auth uid %s", user_id, identity.uid)
    return serialize(user)


def get_user(db: Database, caller: Caller) -> dict:
    user = db["user"].find_one({"_id": parse_oid(caller.id)})
    if not user:
        raise NotFound("User not found")
    return serialize(user)


def list_users(db: Database, caller: Caller) -> List[dict]:
    require_admin(caller)
    return [serialize(u) for u in db["user"].find().sort([("created_at", -1)])]
