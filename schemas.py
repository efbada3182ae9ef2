"""
Database Schemas

MongoDB collection schemas for the storefront, defined as Pydantic models.
Model name lowercased is the collection name:
- User -> "user" (cart and wishlist are embedded)
- Product -> "product"
- Order -> "order"

Multi-word fields accept the storefront client's camelCase spelling as an
alias; documents are always stored with the snake_case field names.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

CATEGORIES = ("T-Shirts", "Shorts", "Tracksuits", "Shoes", "Accessories")
SIZES = ("XS", "S", "M", "L", "XL", "XXL", "One Size", "6", "7", "8", "9", "10", "11")
ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
PAYMENT_METHODS = ("Credit Card", "Debit Card", "Cash on Delivery", "UPI")

Category = Literal["T-Shirts", "Shorts", "Tracksuits", "Shoes", "Accessories"]
Size = Literal["XS", "S", "M", "L", "XL", "XXL", "One Size", "6", "7", "8", "9", "10", "11"]
OrderStatus = Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"]
PaymentMethod = Literal["Credit Card", "Debit Card", "Cash on Delivery", "UPI"]


class Address(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = Field("", alias="zipCode")
    country: str = "India"


class Preferences(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email_notifications: bool = Field(True, alias="emailNotifications")
    sms_notifications: bool = Field(False, alias="smsNotifications")
    order_updates: bool = Field(True, alias="orderUpdates")
    promotional_emails: bool = Field(True, alias="promotionalEmails")
    newsletter: bool = True


class CartItem(BaseModel):
    id: str = Field(..., description="Synthetic line id")
    product_id: str
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    password_hash: str = Field(..., description="BCrypt hashed password")
    phone: Optional[str] = None
    is_admin: bool = False
    address: Address = Field(default_factory=Address)
    preferences: Preferences = Field(default_factory=Preferences)
    cart: List[CartItem] = Field(default_factory=list)
    wishlist: List[str] = Field(default_factory=list, description="Product ids")


class Product(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    price: float = Field(..., gt=0)
    category: Category
    sizes: List[Size] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    image: str = ""
    stock: int = Field(0, ge=0)
    brand: Optional[str] = None
    is_active: bool = Field(True, alias="isActive")

    @model_validator(mode="after")
    def check_orderable(self):
        if self.is_active and (not self.sizes or not self.colors):
            raise ValueError("An active product needs at least one size and one color")
        return self


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    category: Optional[Category] = None
    sizes: Optional[List[Size]] = None
    colors: Optional[List[str]] = None
    image: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    brand: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None
    price: float = Field(..., ge=0, description="Unit price at time of order")


class Order(BaseModel):
    user_id: str
    ordered_at: datetime
    status: OrderStatus = "Pending"
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0, description="Sum of line price * quantity")
    total_amount: float = Field(..., ge=0, description="Total as submitted by the client")
    shipping_address: Address
    payment_method: PaymentMethod
    notes: Optional[str] = None
    promo_code: Optional[str] = None
    discount: float = Field(0, ge=0)
    cart_cleared: bool = False
    stock_applied: bool = False
