# bites/ordering/lifecycle.py
"""
Order status state machine.

    pending -> confirmed -> preparing -> ready_for_pickup -> out_for_delivery -> delivered

    any status before delivered -> cancelled

Every transition is a single conditional UPDATE keyed on the status the
caller read, so two actors racing on one order cannot both win. The status
and its timestamp are written by the same statement.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import Conflict, Forbidden, NotFound, ValidationFailed
from ..guards import Identity
from ..models import CustomerProfile, Order, PaymentMethod, PaymentStatus, Role, utcnow
from ..realtime import channel_key

logger = logging.getLogger("bites.ordering.lifecycle")


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY_FOR_PICKUP = "ready_for_pickup"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


FORWARD: List[OrderStatus] = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]

NEXT_STATUS: Dict[OrderStatus, OrderStatus] = {a: b for a, b in zip(FORWARD, FORWARD[1:])}

TERMINAL = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

TIMESTAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY_FOR_PICKUP: "ready_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

RESTAURANT_STEPS = frozenset({OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY_FOR_PICKUP})
DELIVERY_STEPS = frozenset({OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED})


def parse_status(value: OrderStatus | str) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationFailed(
            f"Unknown order status: {value}",
            details=[{"field": "status", "message": f"must be one of {[s.value for s in OrderStatus]}"}],
        )


def can_transition(current: OrderStatus | str, new: OrderStatus | str) -> bool:
    current, new = OrderStatus(current), OrderStatus(new)
    if current in TERMINAL:
        return False
    if new is OrderStatus.CANCELLED:
        return True
    return NEXT_STATUS.get(current) is new


def ensure_actor_may_transition(
    identity: Identity,
    order: Order,
    restaurant_owner_id: Optional[int],
    new: OrderStatus,
) -> None:
    if identity.is_admin:
        return

    allowed = False
    if new in RESTAURANT_STEPS:
        allowed = identity.role == Role.RESTAURANT_PARTNER.value and identity.user_id == restaurant_owner_id
    elif new in DELIVERY_STEPS:
        allowed = identity.role == Role.DELIVERY_PARTNER.value and identity.user_id == order.delivery_partner_id
    elif new is OrderStatus.CANCELLED:
        allowed = identity.user_id in (order.customer_id, restaurant_owner_id)

    if not allowed:
        raise Forbidden(f"You cannot move this order to {new.value}", code="ACCESS_DENIED")


@dataclass(frozen=True)
class StatusChanged:
    order_id: int
    order_number: str
    previous_status: str
    status: str
    timestamp: datetime
    customer_id: int
    restaurant_id: int
    delivery_partner_id: Optional[int]

    def audience(self) -> List[str]:
        keys = [channel_key("user", self.customer_id), channel_key("restaurant", self.restaurant_id)]
        if self.delivery_partner_id is not None:
            keys.append(channel_key("delivery", self.delivery_partner_id))
        return keys


@dataclass
class TransitionResult:
    order: Order
    event: Optional[StatusChanged] = None

    @property
    def changed(self) -> bool:
        return self.event is not None


def transition(
    db: Session,
    order_id: int,
    new_status: OrderStatus | str,
    expected_status: OrderStatus | str | None = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    new = parse_status(new_status)

    order = db.get(Order, order_id, populate_existing=True)
    if not order:
        raise NotFound("Order not found", code="ORDER_NOT_FOUND")

    current = OrderStatus(order.status)
    if new is current:
        return TransitionResult(order)

    if expected_status is not None and parse_status(expected_status) is not current:
        raise Conflict(
            f"Order is {current.value}, not {parse_status(expected_status).value}",
            code="STATUS_CONFLICT",
            details={"current": current.value},
        )

    if not can_transition(current, new):
        raise Conflict(
            f"Cannot move order from {current.value} to {new.value}",
            code="INVALID_TRANSITION",
            details={"from": current.value, "to": new.value},
        )
    if new is OrderStatus.OUT_FOR_DELIVERY and order.delivery_partner_id is None:
        raise Conflict("A delivery partner must be assigned first", code="INVALID_TRANSITION")

    now = now or utcnow()
    values = {
        Order.status: new.value,
        Order.updated_at: now,
        Order.version: Order.version + 1,
    }
    ts_field = TIMESTAMP_FIELDS.get(new)
    if ts_field:
        col = getattr(Order, ts_field)
        # set once: a timestamp already reached is never overwritten
        values[col] = func.coalesce(col, now)
    if new is OrderStatus.CANCELLED and reason:
        values[Order.cancel_reason] = reason

    rows = (
        db.query(Order)
        .filter(Order.id == order_id, Order.status == current.value)
        .update(values, synchronize_session=False)
    )
    if rows != 1:
        db.rollback()
        raise Conflict("Order status was changed by someone else", code="STATUS_CONFLICT")

    if new is OrderStatus.CANCELLED:
        _refund_wallet_payment(db, order, now)

    db.commit()
    db.refresh(order)

    logger.info("order %s %s -> %s", order.order_number, current.value, new.value)
    event = StatusChanged(
        order_id=order.id,
        order_number=order.order_number,
        previous_status=current.value,
        status=new.value,
        timestamp=now,
        customer_id=order.customer_id,
        restaurant_id=order.restaurant_id,
        delivery_partner_id=order.delivery_partner_id,
    )
    return TransitionResult(order, event)


def _refund_wallet_payment(db: Session, order: Order, now: datetime) -> None:
    if order.payment_method != PaymentMethod.WALLET.value:
        return
    rows = (
        db.query(Order)
        .filter(Order.id == order.id, Order.payment_status == PaymentStatus.PAID.value)
        .update({Order.payment_status: PaymentStatus.REFUNDED.value, Order.updated_at: now}, synchronize_session=False)
    )
    if rows == 1:
        credit_wallet(db, order)


def credit_wallet(db: Session, order: Order) -> None:
    """Give the order total back to the customer's wallet, in the caller's transaction."""
    db.query(CustomerProfile).filter(CustomerProfile.user_id == order.customer_id).update(
        {CustomerProfile.wallet_balance: CustomerProfile.wallet_balance + order.total_amount},
        synchronize_session=False,
    )
