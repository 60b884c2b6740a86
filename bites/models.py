# bites/models.py
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from .db import Base


def utcnow() -> datetime:
    """Current UTC time without an offset; DateTime columns hold naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    RESTAURANT_PARTNER = "restaurant_partner"
    DELIVERY_PARTNER = "delivery_partner"


class PaymentMethod(str, Enum):
    GATEWAY = "gateway"
    WALLET = "wallet"
    CASH_ON_DELIVERY = "cash_on_delivery"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True)
    email = Column(String, unique=True, index=True, nullable=False)
    phone_number = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    # absent for externally-authenticated accounts
    password_hash = Column(String, nullable=True)
    role = Column(String, nullable=False, default=Role.CUSTOMER.value, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    profile_picture = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class CustomerProfile(Base):
    __tablename__ = "customer_profiles"
    __table_args__ = (
        CheckConstraint("wallet_balance >= 0", name="ck_profile_wallet_non_negative"),
        CheckConstraint("loyalty_points >= 0", name="ck_profile_points_non_negative"),
    )
    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    addresses = Column(JSON, nullable=False, default=list)
    preferences = Column(JSON, nullable=False, default=dict)
    wallet_balance = Column(Float, nullable=False, default=0.0)
    loyalty_points = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)


class Restaurant(Base):
    __tablename__ = "restaurants"
    id = Column(Integer, primary_key=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=utcnow)


class MenuItem(Base):
    __tablename__ = "menu_items"
    id = Column(Integer, primary_key=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Float, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    # [{"name": "Spice", "options": [{"option": "Hot", "price": 0}]}]
    customizations = Column(JSON, nullable=False, default=list)


class Coupon(Base):
    __tablename__ = "coupons"
    id = Column(Integer, primary_key=True)
    code = Column(String, unique=True, index=True, nullable=False)
    discount = Column(Float, nullable=False)
    min_subtotal = Column(Float, nullable=False, default=0.0)
    is_active = Column(Boolean, nullable=False, default=True)


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_customer_status", "customer_id", "status"),
        Index("ix_orders_restaurant_status", "restaurant_id", "status"),
        Index("ix_orders_partner_status", "delivery_partner_id", "status"),
    )
    id = Column(Integer, primary_key=True)
    order_number = Column(String, unique=True, index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    delivery_partner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    status = Column(String, nullable=False, default="pending", index=True)
    # bumped on every conditional update
    version = Column(Integer, nullable=False, default=1)

    # [{menu_item_id, name, quantity, price, customizations: [{name, option, price}]}]
    items = Column(JSON, nullable=False, default=list)

    subtotal = Column(Float, nullable=False)
    delivery_fee = Column(Float, nullable=False)
    taxes = Column(Float, nullable=False)
    coupon_code = Column(String, nullable=True)
    coupon_discount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False)

    payment_method = Column(String, nullable=False)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_order_ref = Column(String, nullable=True)
    payment_ref = Column(String, nullable=True)

    delivery_address = Column(JSON, nullable=False)
    estimated_time = Column(Integer, nullable=False)
    instructions = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    placed_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    confirmed_at = Column(DateTime, nullable=True)
    preparing_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
