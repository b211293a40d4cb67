"""
Account service: identity sync, users, cart, orders and mock payments.
"""
import os
import logging
from typing import Any, Optional

from fastapi import FastAPI, Depends, Response, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pymongo.database import Database

import carts
import orders
import payments
import users
from auth import Caller, Identity, get_caller, get_identity
from database import get_db
from errors import install_error_handlers

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Account Service", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


# Request bodies accept both snake_case and the camelCase the web client sends
class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartAdd(RequestModel):
    product_id: str = Field(..., min_length=1)
    product_name: str = Field(..., min_length=1)
    price: float = Field(..., gt=0, allow_inf_nan=False)
    quantity: int = Field(1, ge=1)
    image_url: Optional[str] = None


class CartQuantity(RequestModel):
    quantity: int = Field(..., ge=1)


# Order and payment fields are checked by the order/payment modules so that
# every failing field is reported together
class OrderCreate(RequestModel):
    products: Any = None
    total_price: Any = None
    payment_method: Any = None


class StatusUpdate(RequestModel):
    status: Any = None


class PaymentRequest(RequestModel):
    order_id: Any = None
    amount: Any = None
    method: Any = None


# Health
@app.get("/")
def root():
    return {"message": "Account service running"}

@app.get("/health")
def health():
    return {"status": "ok", "service": "account-service"}

# Auth
@app.post("/api/auth/sync")
def sync(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    user = users.sync_user(db, identity)
    return {"message": "User synced successfully", "user": user}

# Users
@app.get("/api/users/me")
def get_me(caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return users.get_user(db, caller)

@app.get("/api/users")
def all_users(caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return users.list_users(db, caller)

# Cart
@app.get("/api/cart")
def get_cart(caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return carts.get_cart(db, caller)

@app.post("/api/cart/add")
def add_to_cart(body: CartAdd, response: Response, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    item, created = carts.add_to_cart(
        db, caller, body.product_id, body.product_name, body.price, body.quantity, body.image_url
    )
    if created:
        response.status_code = status.HTTP_201_CREATED
    return item

@app.delete("/api/cart/clear")
def clear_cart(caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    carts.clear_cart(db, caller)
    return {"message": "Cart cleared successfully"}

@app.put("/api/cart/{item_id}")
def update_cart_item(item_id: str, body: CartQuantity, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return carts.update_cart_item(db, caller, item_id, body.quantity)

@app.delete("/api/cart/{item_id}")
def remove_from_cart(item_id: str, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    carts.remove_from_cart(db, caller, item_id)
    return {"message": "Item removed from cart"}

# Orders
@app.post("/api/orders", status_code=201)
def create_order(body: OrderCreate, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return orders.create_order(db, caller, body.products, body.total_price, body.payment_method)

@app.get("/api/orders")
def my_orders(caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return orders.list_orders(db, caller)

@app.get("/api/orders/{order_id}")
def order_detail(order_id: str, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return orders.get_order(db, caller, order_id)

@app.patch("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdate, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return orders.update_status(db, caller, order_id, body.status)

@app.get("/api/admin/orders")
def admin_orders(caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return orders.list_all_orders(db, caller)

# Payments
@app.post("/api/payments/process", status_code=201)
def process_payment(body: PaymentRequest, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return payments.process_payment(db, caller, body.order_id, body.amount, body.method)

@app.get("/api/payments/{payment_id}")
def payment_detail(payment_id: str, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return payments.get_payment(db, caller, payment_id)

@app.post("/api/payments/{payment_id}/refund")
def refund_payment(payment_id: str, caller: Caller = Depends(get_caller), db: Database = Depends(get_db)):
    return payments.refund_payment(db, caller, payment_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 3001))
    uvicorn.run(app, host="0.0.0.0", port=port)
