import os
import json
import hmac
import base64
import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Literal, Optional, Union

from fastapi import Depends, Header
from pydantic import BaseModel, EmailStr, ValidationError
from pymongo.database import Database

from database import get_db
from errors import Forbidden, NotFound, Unauthorized

logger = logging.getLogger(__name__)

# Identity tokens are HS256 JWTs issued by the auth provider
AUTH_SECRET = os.getenv("AUTH_SECRET", "devsecret")
TOKEN_EXPIRE_MINUTES = 60


def _b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(',', ':')).encode())
    payload_b64 = _b64url_encode(json.dumps(payload, default=str, separators=(',', ':')).encode())
    signing_input = f"{header_b64}.{payload_b64}".encode()
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    return f"{header_b64}.{payload_b64}.{_b64url_encode(signature)}"


def jwt_decode(token: str, secret: str) -> dict:
    try:
        header_b64, payload_b64, sig_b64 = token.split('.')
        signing_input = f"{header_b64}.{payload_b64}".encode()
        expected_sig = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
        if not hmac.compare_digest(_b64url_encode(expected_sig), sig_b64):
            raise ValueError("Invalid signature")
        payload = json.loads(_b64url_decode(payload_b64))
        if 'exp' in payload:
            exp = payload['exp']
            if isinstance(exp, str):
                exp = datetime.fromisoformat(exp)
            else:
                exp = datetime.fromtimestamp(exp, tz=timezone.utc)
            if exp.tzinfo is None:
                exp = exp.replace(tzinfo=timezone.utc)
            if datetime.now(timezone.utc) > exp:
                raise ValueError("Token expired")
        return payload
    except Exception as e:
        raise ValueError(str(e))


def create_identity_token(uid: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    """Mint a token the way the auth provider does. Used by seeding and tests."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=TOKEN_EXPIRE_MINUTES))
    return jwt_encode({"sub": uid, "email": email, "exp": int(expire.timestamp())}, AUTH_SECRET)


class Identity(BaseModel):
    uid: str
    email: EmailStr


class Caller(BaseModel):
    id: str
    email: str
    role: str = "client"


class Allowed(BaseModel):
    allowed: Literal[True] = True


class Denied(BaseModel):
    allowed: Literal[False] = False
    reason: str


Permission = Union[Allowed, Denied]


def check_admin(caller: Caller) -> Permission:
    if caller.role != "admin":
        return Denied(reason="Admin access required")
    return Allowed()


def require_admin(caller: Caller) -> None:
    permission = check_admin(caller)
    if isinstance(permission, Denied):
        raise Forbidden(permission.reason)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Unauthorized: No token provided")
    return authorization[len("Bearer "):].strip()


def get_identity(authorization: Optional[str] = Header(None)) -> Identity:
    token = bearer_token(authorization)
    try:
        payload = jwt_decode(token, AUTH_SECRET)
    except ValueError as e:
        logger.info("Rejected identity token: %s", e)
        raise Unauthorized("Unauthorized: Invalid or expired token")
    uid = payload.get("sub") or payload.get("user_id")
    email = payload.get("email")
    if not uid or not email:
        raise Unauthorized("Unauthorized: Invalid or expired token")
    try:
        return Identity(uid=str(uid), email=email)
    except ValidationError:
        raise Unauthorized("Unauthorized: Invalid or expired token")


def caller_from_user(user: dict) -> Caller:
    return Caller(id=str(user["_id"]), email=user["email"], role=user.get("role", "client"))


def get_caller(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)) -> Caller:
    user = db["user"].find_one({"auth_uid": identity.uid})
    if not user:
        raise NotFound("User not found in our database.")
    return caller_from_user(user)

