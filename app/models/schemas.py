import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[+]*[(]{0,1}[0-9]{1,4}[)]{0,1}[-\s\./0-9]*$")

OrderStatusName = Literal["pending", "processing", "shipped", "delivered", "cancelled", "completed"]
PaymentMethod = Literal["credit_card", "paypal", "upi", "cod"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]


# --- Users / auth ---

class UserCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# --- Orders ---

class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    email: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=50)
    zip: str = Field(..., min_length=1, max_length=20)
    country: str = "United States"
    phone: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v: str) -> str:
        v = v.lower()
        if not EMAIL_RE.match(v):
            raise ValueError("Invalid email address format")
        return v

    @field_validator("phone")
    @classmethod
    def check_phone(cls, v: Optional[str]) -> Optional[str]:
        if v and not PHONE_RE.match(v):
            raise ValueError(f"{v} is not a valid phone number!")
        return v or None


class OrderItemIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product: Optional[str] = None
    legacy_id: Optional[str] = Field(None, alias="_id")
    quantity: int = Field(..., le=1000)
    # client supplied unit price, trusted when present
    price: Optional[float] = Field(None, ge=0)

    @property
    def product_id(self) -> Optional[str]:
        return self.product or self.legacy_id


class OrderCreate(BaseModel):
    items: List[OrderItemIn] = []
    shippingAddress: ShippingAddress
    paymentMethod: PaymentMethod = "credit_card"


class StatusUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: OrderStatusName
    changedBy: Optional[str] = None
    note: Optional[str] = Field(None, max_length=200)
    trackingNumber: Optional[str] = None
    paymentStatus: Optional[PaymentStatus] = None


class CancelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = Field(None, max_length=500)


# --- Products ---

class Dimensions(BaseModel):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class ShippingMethod(BaseModel):
    type: str
    price: float = Field(0, ge=0)


class ShippingInfo(BaseModel):
    weight: Optional[float] = None
    dimensions: Optional[Dimensions] = None
    methods: List[ShippingMethod] = []
    processingTime: Optional[str] = None


class Variant(BaseModel):
    model_config = ConfigDict(extra="forbid")

    color: Optional[str] = None
    size: Optional[str] = None
    stock: int = Field(0, ge=0)
    price: Optional[float] = Field(None, ge=0)
    sku: str = Field(..., min_length=1)
    sold: int = Field(0, ge=0)


def _check_unique_skus(variants: Optional[List[Variant]]):
    if variants:
        skus = [v.sku for v in variants]
        if len(skus) != len(set(skus)):
            raise ValueError("Variant SKUs must be unique")


class ProductIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1)
    category: Optional[str] = None
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    offerPrice: Optional[float] = Field(None, ge=0)
    quantity: int = Field(0, ge=0)
    sold: int = Field(0, ge=0)
    salesCount: Optional[int] = Field(None, ge=0)
    variants: List[Variant] = []
    tags: List[str] = []
    image: Optional[str] = None
    images: List[str] = []
    status: bool = True
    featured: bool = False
    shipping: Optional[ShippingInfo] = None

    @model_validator(mode="after")
    def check_prices(self):
        if self.offerPrice is not None and self.offerPrice > self.price:
            raise ValueError("offerPrice cannot exceed price")
        _check_unique_skus(self.variants)
        return self


class ProductUpdate(BaseModel):
    """Fields an admin may change; anything else in the body is rejected."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    offerPrice: Optional[float] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=0)
    variants: Optional[List[Variant]] = None
    tags: Optional[List[str]] = None
    image: Optional[str] = None
    images: Optional[List[str]] = None
    status: Optional[bool] = None
    featured: Optional[bool] = None
    shipping: Optional[ShippingInfo] = None

    @model_validator(mode="after")
    def check_variants(self):
        _check_unique_skus(self.variants)
        return self


_FIELD_LABELS = {"shippingAddress": "shipping address field"}


def describe_validation_errors(errors: list) -> tuple:
    """First pydantic error as a (message, field) pair for the error envelope."""
    if not errors:
        return "Invalid request", None
    err = errors[0]
    loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
    field = ".".join(loc) or None
    leaf = loc[-1] if loc else None
    parent = next((_FIELD_LABELS[p] for p in loc[:-1] if p in _FIELD_LABELS), "field")
    # null counts as absent, like an omitted key
    missing = err.get("type") in ("missing", "string_too_short") or (
        "input" in err and err["input"] is None and err.get("type", "").endswith("_type")
    )
    if missing and leaf:
        return f"Missing {parent}: {leaf}", field
    msg = err.get("msg", "Invalid value")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    elif leaf:
        msg = f"Invalid {leaf}: {msg}"
    return msg, field
