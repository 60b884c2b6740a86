# bites/schemas.py
from __future__ import annotations

import re
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import PaymentMethod, PaymentStatus, Role

_PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
_PHONE_RE = re.compile(r"^[6-9]\d{9}$")


def _check_password(v: str) -> str:
    if len(v) < 6:
        raise ValueError("Password must be at least 6 characters long")
    if not _PASSWORD_RE.match(v):
        raise ValueError("Password must contain at least one uppercase letter, one lowercase letter, and one number")
    return v


# -------------------
# Auth
# -------------------
class RegisterIn(BaseModel):
    email: EmailStr
    password: str
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    phone_number: str
    role: Literal["customer", "restaurant_partner", "delivery_partner"] = Role.CUSTOMER.value

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)

    @field_validator("phone_number")
    @classmethod
    def _phone(cls, v: str) -> str:
        v = v.strip()
        if not _PHONE_RE.match(v):
            raise ValueError("Please enter a valid phone number")
        return v


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class TokenIn(BaseModel):
    token: str = Field(..., min_length=64, max_length=64)


class ForgotPasswordIn(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def _lower_email(cls, v: str) -> str:
        return v.strip().lower()


class ResetPasswordIn(BaseModel):
    token: str = Field(..., min_length=64, max_length=64)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def _password(cls, v: str) -> str:
        return _check_password(v)


class ActiveIn(BaseModel):
    is_active: bool


# -------------------
# Profiles
# -------------------
class Coordinates(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AddressIn(BaseModel):
    type: Literal["home", "work", "other"]
    street_address: str = Field(..., min_length=1)
    landmark: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=r"^\d{6}$")
    coordinates: Coordinates
    is_default: bool = False


class PreferencesIn(BaseModel):
    veg_only: Optional[bool] = None
    favorite_cuisines: Optional[List[str]] = None
    dietary_restrictions: Optional[List[str]] = None


# -------------------
# Restaurants / menu
# -------------------
class CustomizationOptionIn(BaseModel):
    option: str = Field(..., min_length=1)
    price: float = Field(0.0, ge=0)


class CustomizationGroupIn(BaseModel):
    name: str = Field(..., min_length=1)
    options: List[CustomizationOptionIn] = Field(default_factory=list)


class RestaurantIn(BaseModel):
    name: str = Field(..., min_length=1)
    delivery_fee: float = Field(0.0, ge=0)


class MenuItemIn(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    is_available: bool = True
    customizations: List[CustomizationGroupIn] = Field(default_factory=list)


class CouponIn(BaseModel):
    code: str = Field(..., min_length=3, max_length=32)
    discount: float = Field(..., gt=0)
    min_subtotal: float = Field(0.0, ge=0)
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.strip().upper()


# -------------------
# Cart / orders
# -------------------
class ChosenCustomization(BaseModel):
    name: str
    option: str


class CartLineIn(BaseModel):
    menu_item_id: int
    quantity: int = Field(..., ge=1)
    customizations: List[ChosenCustomization] = Field(default_factory=list)


class CartIn(BaseModel):
    restaurant_id: int
    items: List[CartLineIn] = Field(..., min_length=1)
    coupon_code: Optional[str] = None


class CartItemIn(CartLineIn):
    restaurant_id: int


class CartQuantityIn(BaseModel):
    quantity: int


class CartCouponIn(BaseModel):
    code: str = Field(..., min_length=1)


class DeliveryIn(BaseModel):
    address: Optional[AddressIn] = None
    estimated_time: int = Field(30, ge=5)
    instructions: Optional[str] = Field(None, max_length=200)


class PlaceOrderIn(CartIn):
    delivery: DeliveryIn = Field(default_factory=DeliveryIn)
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=500)
    expected_total: Optional[float] = Field(None, ge=0)


OrderStatusName = Literal[
    "pending", "confirmed", "preparing", "ready_for_pickup", "out_for_delivery", "delivered", "cancelled"
]


class StatusIn(BaseModel):
    status: OrderStatusName
    # status the caller last saw; a mismatch is a conflict instead of an overwrite
    expected_status: Optional[OrderStatusName] = None
    reason: Optional[str] = Field(None, max_length=500)


class PaymentStatusIn(BaseModel):
    status: PaymentStatus
    payment_order_ref: Optional[str] = None
    payment_ref: Optional[str] = None


class LocationIn(BaseModel):
    coordinates: Coordinates
