import os
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pymongo.errors import PyMongoError

import auth
import catalog
import orders
import users
from auth import get_current_user_id, require_admin
from database import db, diagnostics, ensure_indexes, get_db
from errors import AppError, ServerFault, ValidationFailed
from schemas import Address, OrderStatus, PaymentMethod, Product, ProductUpdate

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def run_startup_tasks(database) -> None:
    ensure_indexes(database)
    auth.bootstrap_admin(database)
    orders.reconcile_cart_clears(database)
    if os.getenv("SEED_PRODUCTS") == "1":
        catalog.seed_products(database)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        run_startup_tasks(db)
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, skipping startup tasks")
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error translation

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc) or "body", "message": err.get("msg", "invalid")})
    error = ValidationFailed("Invalid request", errors=errors)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(PyMongoError)
async def storage_error_handler(request: Request, exc: PyMongoError):
    logger.error("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
    error = ServerFault("Server error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Request models

class SignupInput(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    phone: Optional[str] = None


class LoginInput(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


class CartItemInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class WishlistInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId")


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[Address] = None


class ChangePasswordInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword")


class PreferencesInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_notifications: Optional[bool] = Field(None, alias="emailNotifications")
    sms_notifications: Optional[bool] = Field(None, alias="smsNotifications")
    order_updates: Optional[bool] = Field(None, alias="orderUpdates")
    promotional_emails: Optional[bool] = Field(None, alias="promotionalEmails")
    newsletter: Optional[bool] = None


class OrderInput(BaseModel):
    """Checkout body. Order lines are taken from the stored cart, not from the request."""
    model_config = ConfigDict(populate_by_name=True)

    total_amount: float = Field(..., ge=0, alias="totalAmount")
    shipping_address: Address = Field(..., alias="shippingAddress")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    notes: Optional[str] = Field(None, alias="orderNotes")
    promo_code: Optional[str] = Field(None, alias="promoCode")
    discount: Optional[float] = Field(0, ge=0)


class StatusInput(BaseModel):
    status: OrderStatus


# Routes
@app.get("/")
def read_root():
    return {"message": "Storefront API"}


@app.get("/test")
def test_database():
    return diagnostics(db)


# Auth
@app.post("/api/auth/signup", response_model=TokenResponse, status_code=201)
def signup(payload: SignupInput, db=Depends(get_db)):
    return auth.signup(db, payload.name, payload.email, payload.password, payload.phone)


@app.post("/api/auth/login", response_model=TokenResponse)
def login(payload: LoginInput, db=Depends(get_db)):
    return auth.login(db, payload.email, payload.password)


@app.post("/api/auth/admin/login", response_model=TokenResponse)
def admin_login(payload: LoginInput, db=Depends(get_db)):
    return auth.admin_login(db, payload.email, payload.password)


@app.get("/api/auth/admin/info")
def admin_info(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return auth.admin_info(db)


@app.get("/api/auth/me")
def me(user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    return users.get_profile(db, user_id)


# Products
@app.get("/api/products")
def list_products(category: Optional[str] = None, include_inactive: bool = False, db=Depends(get_db)):
    return catalog.list_products(db, category=category, include_inactive=include_inactive)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return catalog.get_product(db, product_id)


@app.post("/api/products", status_code=201)
def create_product(data: Product, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return catalog.create_product(db, data)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, admin: dict = Depends(require_admin), db=Depends(get_db)):
    return catalog.update_product(db, product_id, data)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db=Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"message": "Product deleted successfully"}


# Cart
@app.get("/api/users/cart")
def get_cart(user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    return users.get_cart(db, user_id)


@app.post("/api/users/cart")
def add_to_cart(item: CartItemInput, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    users.add_to_cart(db, user_id, item.product_id, item.quantity, item.size, item.color)
    return {"message": "Item added to cart successfully"}


@app.delete("/api/users/cart/{item_id}")
def remove_from_cart(item_id: str, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    users.remove_from_cart(db, user_id, item_id)
    return {"message": "Item removed from cart successfully"}


# Wishlist
@app.get("/api/users/wishlist")
def get_wishlist(user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    return users.get_wishlist(db, user_id)


@app.post("/api/users/wishlist")
def add_to_wishlist(item: WishlistInput, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    users.add_to_wishlist(db, user_id, item.product_id)
    return {"message": "Item added to wishlist successfully"}


@app.delete("/api/users/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    users.remove_from_wishlist(db, user_id, product_id)
    return {"message": "Item removed from wishlist successfully"}


# Profile
@app.get("/api/users/profile")
def get_profile(user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    return users.get_profile(db, user_id)


@app.put("/api/users/profile")
def update_profile(data: ProfileUpdate, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    user = users.update_profile(db, user_id, data.name, data.email, data.phone, data.address)
    return {"message": "Profile updated successfully", "user": user}


@app.put("/api/users/change-password")
def change_password(data: ChangePasswordInput, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    users.change_password(db, user_id, data.current_password, data.new_password)
    return {"message": "Password changed successfully"}


@app.put("/api/users/preferences")
def update_preferences(data: PreferencesInput, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    prefs = users.update_preferences(db, user_id, data.model_dump())
    return {"message": "Preferences updated successfully", "preferences": prefs}


@app.delete("/api/users/account")
def delete_account(user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    users.delete_account(db, user_id)
    return {"message": "Account deleted successfully"}


@app.get("/api/users/admin/users")
def list_users(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return users.list_customers(db)


# Orders
@app.post("/api/orders", status_code=201)
def create_order(data: OrderInput, user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    order = orders.create_order(
        db, user_id, data.total_amount, data.shipping_address, data.payment_method,
        notes=data.notes, promo_code=data.promo_code, discount=data.discount or 0,
    )
    return {"message": "Order placed successfully", "order": order}


@app.get("/api/orders/user")
def get_user_orders(user_id: str = Depends(get_current_user_id), db=Depends(get_db)):
    return orders.get_user_orders(db, user_id)


@app.get("/api/orders/admin")
def get_all_orders(admin: dict = Depends(require_admin), db=Depends(get_db)):
    return orders.get_all_orders(db)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, data: StatusInput, admin: dict = Depends(require_admin), db=Depends(get_db)):
    order = orders.update_order_status(db, order_id, data.status)
    return {"message": "Order status updated successfully", "order": order}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
