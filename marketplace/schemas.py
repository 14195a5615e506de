import datetime as dt
import math
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, computed_field, field_validator

from . import pricing


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


# Define order status enum
class OrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSING = "processing"
    OUT_FOR_DELIVERY = "out-for-delivery"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH_ON_DELIVERY = "cash-on-delivery"
    BKASH = "bkash"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def dump(model: type, obj: Any) -> dict:
    """Validate an ORM object against ``model`` and render it JSON-ready."""
    return model.model_validate(obj).model_dump(mode="json")


def split_csv(value: Any) -> List[str]:
    """Accept either a comma separated string or a list of strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [str(part).strip() for part in value if str(part).strip()]


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        return cls(total=total, page=page, limit=limit, pages=math.ceil(total / limit) if limit else 0)


# -----------------------------
# Accounts
# -----------------------------


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, description="Name must be at least 2 characters")
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: Role = Role.BUYER
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("role")
    @classmethod
    def _no_self_service_admin(cls, value: Role) -> Role:
        if value == Role.ADMIN:
            raise ValueError("Role must be buyer or seller")
        return value


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = None


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6, max_length=128)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    phone: Optional[str] = None
    address: Optional[str] = None


class ChangePassword(BaseModel):
    current_password: str = Field(..., min_length=1, description="**Current password** (to verify identity)")
    new_password: str = Field(..., min_length=6, max_length=128, description="**New password** (minimum 6 characters)")


class BanRequest(BaseModel):
    is_banned: bool = Field(..., validation_alias=AliasChoices("is_banned", "isBanned"))


class AccountBrief(BaseModel):
    id: int
    name: str
    email: EmailStr
    phone: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class AccountOut(AccountBrief):
    role: Role
    address: Optional[str] = None
    is_banned: bool = False
    created_at: Optional[dt.datetime] = None


# -----------------------------
# Catalog
# -----------------------------


class ProductUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3)
    description: Optional[str] = Field(None, min_length=10)
    category: Optional[str] = Field(None, min_length=1)
    price: Optional[Decimal] = Field(None, gt=0)
    discount_price: Optional[Decimal] = Field(None, gt=0)
    discount_end_date: Optional[dt.datetime] = None
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    features: Optional[List[str]] = None
    is_hot_collection: Optional[bool] = None
    tags: Optional[List[str]] = None
    brand: Optional[str] = None
    weight: Optional[Decimal] = Field(None, gt=0)
    dimensions: Optional[str] = None
    warranty: Optional[str] = None

    @field_validator("features", "tags", mode="before")
    @classmethod
    def _split(cls, value: Any) -> Optional[List[str]]:
        if value is None:
            return None
        return split_csv(value)


class ProductCreate(ProductUpdate):
    title: str = Field(..., min_length=3, description="Title must be at least 3 characters")
    description: str = Field(..., min_length=10, description="Description must be at least 10 characters")
    category: str = Field(..., min_length=1, description="Category is required")
    price: Decimal = Field(..., gt=0, description="Price must be positive")
    stock: int = Field(..., ge=0, description="Stock cannot be negative")
    is_active: bool = True
    is_hot_collection: bool = False


class ProductOut(BaseModel):
    id: int
    title: str
    description: str
    category: str
    price: Decimal
    discount_price: Optional[Decimal] = None
    discount_end_date: Optional[dt.datetime] = None
    images: List[str] = []
    video: Optional[str] = None
    seller_id: int
    stock: int
    is_active: bool
    features: List[str] = []
    is_hot_collection: bool = False
    tags: List[str] = []
    brand: Optional[str] = None
    weight: Optional[Decimal] = None
    dimensions: Optional[str] = None
    warranty: Optional[str] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def effective_price(self) -> Decimal:
        return pricing.effective_price(self.price, self.discount_price, self.discount_end_date)


class ProductWithSeller(ProductOut):
    seller: Optional[AccountBrief] = None


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2, description="Category name must be at least 2 characters")
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: Optional[bool] = None


class CategoryOut(BaseModel):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool
    created_by: int
    created_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


# -----------------------------
# Orders and reviews
# -----------------------------


class OrderItemCreate(BaseModel):
    product_id: int = Field(..., gt=0, description="Product ID")
    quantity: int = Field(..., ge=1, description="Quantity must be at least 1")


class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1, description="Order must have at least one item")
    shipping_address: str = Field(..., min_length=10, description="Shipping address is required")
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderItemOut(BaseModel):
    product_id: int
    product_title: str
    product_image: Optional[str] = None
    quantity: int
    price: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    id: int
    order_number: str
    buyer_id: int
    seller_id: int
    buyer: Optional[AccountBrief] = None
    seller: Optional[AccountBrief] = None
    items: List[OrderItemOut] = []
    total_amount: Decimal
    shipping_address: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


class ReviewOut(BaseModel):
    id: int
    product_id: int
    buyer_id: int
    order_id: int
    rating: int
    comment: Optional[str] = None
    created_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class Reviewer(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class ProductReviewOut(ReviewOut):
    buyer: Optional[Reviewer] = None
