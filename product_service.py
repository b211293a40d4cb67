"""
Product service: products, categories and coupons.

Admin-only writes are gated by the gateway's admin pre-check; this service
only requires a valid identity token for them.
"""
import os
import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pymongo.database import Database

import catalog
import coupons
from auth import Identity, get_identity
from database import get_db
from errors import install_error_handlers
from schemas import Coupon, Product

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Product Service", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductCreate(RequestModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0, allow_inf_nan=False)
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    in_stock: bool = True
    tags: List[str] = []


class ProductUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    image_url: Optional[str] = None
    category_id: Optional[str] = None
    in_stock: Optional[bool] = None
    tags: Optional[List[str]] = None


class CategoryCreate(RequestModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class CategoryUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CouponApply(RequestModel):
    code: str = Field(..., min_length=1)
    total: float = Field(..., gt=0, allow_inf_nan=False)


class CouponCreate(RequestModel):
    code: str = Field(..., min_length=1)
    discount_type: Literal["percentage", "fixed"]
    discount_value: float = Field(..., gt=0, allow_inf_nan=False)
    valid_until: datetime
    valid_from: Optional[datetime] = None
    min_order_amount: float = Field(0, ge=0, allow_inf_nan=False)
    max_discount: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: bool = True


class CouponUpdate(RequestModel):
    code: Optional[str] = Field(None, min_length=1)
    discount_type: Optional[Literal["percentage", "fixed"]] = None
    discount_value: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    valid_until: Optional[datetime] = None
    valid_from: Optional[datetime] = None
    min_order_amount: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    max_discount: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    usage_limit: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None


# Health
@app.get("/")
def root():
    return {"message": "Product service running"}

@app.get("/health")
def health():
    return {"status": "ok", "service": "product-service"}

# Products
@app.get("/api/products")
def list_products(category: Optional[str] = None, db: Database = Depends(get_db)):
    return catalog.list_products(db, category)

@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product(db, product_id)

@app.post("/api/products", status_code=201)
def create_product(body: ProductCreate, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return catalog.create_product(db, Product(**body.model_dump()))

@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return catalog.update_product(db, product_id, body.model_dump(exclude_unset=True))

@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"message": "Product deleted successfully"}

# Categories
@app.get("/api/categories")
def list_categories(db: Database = Depends(get_db)):
    return catalog.list_categories(db)

@app.post("/api/categories", status_code=201)
def create_category(body: CategoryCreate, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return catalog.create_category(db, body.name, body.description)

@app.put("/api/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdate, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return catalog.update_category(db, category_id, body.model_dump(exclude_unset=True))

@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    catalog.delete_category(db, category_id)
    return {"message": "Category deactivated successfully"}

# Coupons
@app.get("/api/coupons")
def active_coupons(db: Database = Depends(get_db)):
    return coupons.list_active_coupons(db)

@app.post("/api/coupons/apply")
def apply_coupon(body: CouponApply, db: Database = Depends(get_db)):
    return coupons.apply_coupon(db, body.code, body.total)

@app.get("/api/admin/coupons")
def all_coupons(_: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return catalog.list_coupons(db)

@app.post("/api/admin/coupons", status_code=201)
def create_coupon(body: CouponCreate, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return catalog.create_coupon(db, Coupon(**body.model_dump()))

@app.put("/api/admin/coupons/{coupon_id}")
def update_coupon(coupon_id: str, body: CouponUpdate, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    return catalog.update_coupon(db, coupon_id, body.model_dump(exclude_unset=True))

@app.delete("/api/admin/coupons/{coupon_id}")
def delete_coupon(coupon_id: str, _: Identity = Depends(get_identity), db: Database = Depends(get_db)):
    catalog.delete_coupon(db, coupon_id)
    return {"message": "Coupon deleted successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 3002))
    uvicorn.run(app, host="0.0.0.0", port=port)
