"""
Database Schemas for the shop services

Each Pydantic model represents a MongoDB collection.
Collection name is the lowercase of the class name.
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

ORDER_STATUSES = ("pending_payment", "pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("card", "bank_transfer", "paypal")

Role = Literal["client", "admin"]
OrderStatus = Literal["pending_payment", "pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["card", "bank_transfer", "paypal"]


class User(BaseModel):
    auth_uid: str
    email: EmailStr
    role: Role = "client"


class CartItem(BaseModel):
    user_id: str
    product_id: str
    product_name: str
    price: float = Field(..., gt=0)
    quantity: int = Field(1, ge=1)
    image_url: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int
    price: float


class Order(BaseModel):
    user_id: str
    products: List[OrderItem]
    total_price: float
    payment_method: PaymentMethod
    status: OrderStatus = "pending_payment"
    payment_status: Optional[Literal["completed"]] = None
    transaction_id: Optional[str] = None


class Payment(BaseModel):
    order_id: str
    amount: float
    method: PaymentMethod
    status: Literal["completed", "refunded"] = "completed"
    transaction_id: str
    gateway_response: Dict[str, Any] = {}


class Coupon(BaseModel):
    code: str
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., gt=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    used_count: int = 0
    is_active: bool = True
    valid_from: Optional[datetime] = None
    valid_until: datetime


class Category(BaseModel):
    name: str
    description: Optional[str] = None
    slug: str
    is_active: bool = True


class Product(BaseModel):
    name: str
    description: str
    price: float = Field(..., ge=0)
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    in_stock: bool = True
    tags: List[str] = []
