# bites/ordering/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..emailer import Emailer, EmailSendError
from ..errors import Conflict, Forbidden, NotFound, ValidationFailed
from ..guards import Identity, authorize
from ..models import (
    Coupon,
    CustomerProfile,
    MenuItem,
    Order,
    PaymentMethod,
    PaymentStatus,
    Restaurant,
    Role,
    User,
    utcnow,
)
from ..outcome import Outcome
from ..profiles import default_address
from ..realtime import NotificationHub, channel_key
from ..schemas import CartLineIn, PlaceOrderIn
from .lifecycle import (
    OrderStatus,
    TransitionResult,
    credit_wallet,
    ensure_actor_may_transition,
    parse_status,
    transition,
)
from .numbering import OrderNumberGenerator, next_order_number
from .pricing import Totals, compute_totals, totals_consistent

logger = logging.getLogger("bites.ordering.service")

MAX_NUMBER_ATTEMPTS = 3

PAYMENT_TRANSITIONS: Dict[str, set] = {
    PaymentStatus.PENDING.value: {PaymentStatus.PAID.value, PaymentStatus.FAILED.value},
    PaymentStatus.FAILED.value: {PaymentStatus.PAID.value, PaymentStatus.PENDING.value},
    PaymentStatus.PAID.value: {PaymentStatus.REFUNDED.value},
    PaymentStatus.REFUNDED.value: set(),
}


@dataclass
class PricedCart:
    restaurant: Restaurant
    items: List[Dict[str, Any]]
    coupon: Optional[Coupon]
    totals: Totals


# -------------------
# Pricing against the live menu
# -------------------
def _resolve_customizations(item: MenuItem, chosen: List[Any], line_no: int) -> List[Dict[str, Any]]:
    groups = {str(g.get("name")): g for g in (item.customizations or []) if isinstance(g, dict)}
    out: List[Dict[str, Any]] = []
    for c in chosen:
        group = groups.get(c.name)
        option = None
        if group:
            option = next((o for o in group.get("options") or [] if o.get("option") == c.option), None)
        if option is None:
            raise ValidationFailed(
                f"{item.name} has no customization {c.name}: {c.option}",
                code="INVALID_CUSTOMIZATION",
                details=[{"field": f"items.{line_no}.customizations", "message": f"{c.name}: {c.option} not offered"}],
            )
        out.append({"name": c.name, "option": c.option, "price": float(option.get("price") or 0.0)})
    return out


def resolve_coupon(db: Session, code: Optional[str], subtotal: float) -> Optional[Coupon]:
    if not code:
        return None
    coupon = db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()
    if not coupon or not coupon.is_active:
        raise ValidationFailed("Coupon is not valid", code="INVALID_COUPON")
    if subtotal < coupon.min_subtotal:
        raise ValidationFailed(
            f"Coupon {coupon.code} needs a subtotal of at least {coupon.min_subtotal:.2f}",
            code="INVALID_COUPON",
        )
    return coupon


def price_cart(
    db: Session,
    restaurant_id: int,
    lines: List[CartLineIn],
    coupon_code: Optional[str],
    tax_rate: float,
) -> PricedCart:
    """Re-price a client cart with server-side prices; client prices are never trusted."""
    restaurant = db.get(Restaurant, restaurant_id)
    if not restaurant or not restaurant.is_active:
        raise NotFound("Restaurant not found", code="RESTAURANT_NOT_FOUND")

    items: List[Dict[str, Any]] = []
    for i, line in enumerate(lines):
        mi = db.get(MenuItem, line.menu_item_id)
        if not mi or mi.restaurant_id != restaurant.id:
            raise NotFound(f"Menu item {line.menu_item_id} not found", code="MENU_ITEM_NOT_FOUND")
        if not mi.is_available:
            raise ValidationFailed(
                f"{mi.name} is currently unavailable",
                code="ITEM_UNAVAILABLE",
                details=[{"field": f"items.{i}.menu_item_id", "message": "unavailable"}],
            )
        items.append(
            {
                "menu_item_id": mi.id,
                "name": mi.name,
                "quantity": line.quantity,
                "price": float(mi.price),
                "customizations": _resolve_customizations(mi, line.customizations, i),
            }
        )

    base = compute_totals(items, delivery_fee=restaurant.delivery_fee, coupon_discount=0.0, tax_rate=tax_rate)
    coupon = resolve_coupon(db, coupon_code, base.subtotal)
    totals = compute_totals(
        items,
        delivery_fee=restaurant.delivery_fee,
        coupon_discount=coupon.discount if coupon else 0.0,
        tax_rate=tax_rate,
    )
    return PricedCart(restaurant=restaurant, items=items, coupon=coupon, totals=totals)


# -------------------
# Invariants
# -------------------
def ensure_order_invariants(order: Order) -> None:
    problems: List[Dict[str, str]] = []

    if not order.items:
        problems.append({"field": "items", "message": "Order must contain at least one item"})
    for i, it in enumerate(order.items or []):
        if int(it.get("quantity", 0)) < 1:
            problems.append({"field": f"items.{i}.quantity", "message": "Quantity must be at least 1"})
        if float(it.get("price", -1)) < 0:
            problems.append({"field": f"items.{i}.price", "message": "Price cannot be negative"})
        for c in it.get("customizations") or []:
            if float(c.get("price", -1)) < 0:
                problems.append({"field": f"items.{i}.customizations", "message": "Customization price cannot be negative"})

    totals = Totals(
        subtotal=order.subtotal,
        delivery_fee=order.delivery_fee,
        taxes=order.taxes,
        coupon_discount=order.coupon_discount,
        total=order.total_amount,
    )
    if not totals_consistent(totals):
        problems.append({"field": "pricing", "message": "Pricing is inconsistent"})

    if order.estimated_time is None or order.estimated_time < 5:
        problems.append({"field": "delivery.estimated_time", "message": "Estimated delivery time must be at least 5 minutes"})
    if order.instructions and len(order.instructions) > 200:
        problems.append({"field": "delivery.instructions", "message": "Delivery instructions cannot exceed 200 characters"})
    if not order.delivery_address:
        problems.append({"field": "delivery.address", "message": "A delivery address is required"})
    if order.payment_method not in {m.value for m in PaymentMethod}:
        problems.append({"field": "payment_method", "message": "Unknown payment method"})
    if order.payment_status not in {s.value for s in PaymentStatus}:
        problems.append({"field": "payment.status", "message": "Unknown payment status"})
    if order.status not in {s.value for s in OrderStatus}:
        problems.append({"field": "status", "message": "Unknown order status"})

    if problems:
        raise ValidationFailed(", ".join(p["message"] for p in problems), details=problems)


# -------------------
# Serialisation
# -------------------
def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


def serialize_order(o: Order) -> Dict[str, Any]:
    return {
        "id": o.id,
        "order_number": o.order_number,
        "customer_id": o.customer_id,
        "restaurant_id": o.restaurant_id,
        "delivery_partner_id": o.delivery_partner_id,
        "status": o.status,
        "items": o.items or [],
        "pricing": {
            "subtotal": o.subtotal,
            "delivery_fee": o.delivery_fee,
            "taxes": o.taxes,
            "coupon_code": o.coupon_code,
            "coupon_discount": o.coupon_discount,
            "total_amount": o.total_amount,
        },
        "payment": {
            "method": o.payment_method,
            "status": o.payment_status,
            "payment_order_ref": o.payment_order_ref,
            "payment_ref": o.payment_ref,
        },
        "delivery": {
            "address": o.delivery_address,
            "estimated_time": o.estimated_time,
            "instructions": o.instructions,
        },
        "timestamps": {
            "placed_at": _iso(o.placed_at),
            "confirmed_at": _iso(o.confirmed_at),
            "preparing_at": _iso(o.preparing_at),
            "ready_at": _iso(o.ready_at),
            "delivered_at": _iso(o.delivered_at),
            "cancelled_at": _iso(o.cancelled_at),
        },
        "notes": o.notes,
        "cancel_reason": o.cancel_reason,
    }


def order_summary(o: Order) -> Dict[str, Any]:
    return {
        "orderId": o.id,
        "orderNumber": o.order_number,
        "items": [{"name": it.get("name"), "quantity": it.get("quantity")} for it in o.items or []],
        "totalAmount": o.total_amount,
        "paymentMethod": o.payment_method,
        "placedAt": _iso(o.placed_at),
    }


def _format_address(a: Optional[Dict[str, Any]]) -> str:
    if not a:
        return ""
    parts = [a.get("street_address"), a.get("landmark"), a.get("city"), a.get("state"), a.get("pincode")]
    return ", ".join(str(p) for p in parts if p)


# -------------------
# Queries
# -------------------
def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found", code="ORDER_NOT_FOUND")
    return order


def restaurant_owner_id(db: Session, restaurant_id: int) -> Optional[int]:
    r = db.get(Restaurant, restaurant_id)
    return r.owner_id if r else None


def is_involved(identity: Identity, order: Order, owner_id: Optional[int]) -> bool:
    return identity.is_admin or identity.user_id in (order.customer_id, owner_id, order.delivery_partner_id)


def ensure_can_view(db: Session, identity: Identity, order: Order) -> None:
    if not is_involved(identity, order, restaurant_owner_id(db, order.restaurant_id)):
        raise Forbidden("You can only access your own orders", code="ACCESS_DENIED")


def list_orders_for_customer(db: Session, customer_id: int, page: int = 1, limit: int = 10) -> List[Order]:
    page = max(1, page)
    limit = max(1, min(limit, 100))
    return (
        db.query(Order)
        .filter(Order.customer_id == customer_id)
        .order_by(Order.placed_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def list_orders_for_restaurant(db: Session, restaurant_id: int, status: Optional[str] = None) -> List[Order]:
    q = db.query(Order).filter(Order.restaurant_id == restaurant_id)
    if status:
        q = q.filter(Order.status == parse_status(status).value)
    return q.order_by(Order.placed_at.desc(), Order.id.desc()).all()


def list_orders_for_delivery_partner(db: Session, partner_id: int, status: Optional[str] = None) -> List[Order]:
    q = db.query(Order).filter(Order.delivery_partner_id == partner_id)
    if status:
        q = q.filter(Order.status == parse_status(status).value)
    return q.order_by(Order.placed_at.desc(), Order.id.desc()).all()


def list_available_for_pickup(db: Session) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.status == OrderStatus.READY_FOR_PICKUP.value, Order.delivery_partner_id.is_(None))
        .order_by(Order.ready_at.asc(), Order.id.asc())
        .all()
    )


# -------------------
# Placement
# -------------------
def place_order(
    db: Session,
    hub: NotificationHub,
    identity: Identity,
    data: PlaceOrderIn,
    tax_rate: float,
    numbers: Optional[OrderNumberGenerator] = None,
) -> Outcome[Order]:
    authorize(identity, [Role.CUSTOMER])

    priced = price_cart(db, data.restaurant_id, data.items, data.coupon_code, tax_rate)
    totals = priced.totals

    if data.expected_total is not None and abs(data.expected_total - totals.total) > 0.009:
        raise Conflict(
            "Prices changed since the cart was built",
            code="PRICE_CHANGED",
            details={"expected_total": data.expected_total, "total": totals.total},
        )

    if data.delivery.address is not None:
        address = data.delivery.address.model_dump()
    else:
        profile = db.query(CustomerProfile).filter(CustomerProfile.user_id == identity.user_id).first()
        address = default_address(profile) if profile else None
    if not address:
        raise ValidationFailed(
            "A delivery address is required",
            details=[{"field": "delivery.address", "message": "no address given and no default address saved"}],
        )

    paid_from_wallet = data.payment_method == PaymentMethod.WALLET
    now = utcnow()
    next_number = numbers.next if numbers else next_order_number

    order = None
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        order = Order(
            order_number=next_number(),
            customer_id=identity.user_id,
            restaurant_id=priced.restaurant.id,
            delivery_partner_id=None,
            status=OrderStatus.PENDING.value,
            version=1,
            items=priced.items,
            subtotal=totals.subtotal,
            delivery_fee=totals.delivery_fee,
            taxes=totals.taxes,
            coupon_code=priced.coupon.code if priced.coupon else None,
            coupon_discount=totals.coupon_discount,
            total_amount=totals.total,
            payment_method=data.payment_method.value,
            payment_status=PaymentStatus.PENDING.value,
            delivery_address=address,
            estimated_time=data.delivery.estimated_time,
            instructions=data.delivery.instructions,
            notes=data.notes,
            placed_at=now,
            created_at=now,
            updated_at=now,
        )
        ensure_order_invariants(order)
        db.add(order)
        try:
            db.flush()
            break
        except IntegrityError:
            db.rollback()
            logger.warning("order number collision on attempt %d", attempt)
            order = None
    if order is None:
        raise Conflict("Could not allocate an order number, please retry", code="ORDER_NUMBER_CONFLICT")

    if paid_from_wallet:
        rows = (
            db.query(CustomerProfile)
            .filter(CustomerProfile.user_id == identity.user_id, CustomerProfile.wallet_balance >= totals.total)
            .update(
                {CustomerProfile.wallet_balance: CustomerProfile.wallet_balance - totals.total},
                synchronize_session=False,
            )
        )
        if rows != 1:
            db.rollback()
            raise Conflict("Wallet balance is too low for this order", code="INSUFFICIENT_WALLET_BALANCE")
        order.payment_status = PaymentStatus.PAID.value

    db.commit()
    db.refresh(order)
    logger.info("order %s placed by user %s (total %.2f)", order.order_number, identity.user_id, order.total_amount)

    outcome: Outcome[Order] = Outcome(order)
    try:
        hub.publish_new_order(order.restaurant_id, order_summary(order))
    except Exception as e:
        outcome.record_failure("new_order_notification", e)
    return outcome


# -------------------
# Status changes
# -------------------
def _send_confirmation(db: Session, emailer: Emailer, order: Order) -> None:
    customer = db.get(User, order.customer_id)
    restaurant = db.get(Restaurant, order.restaurant_id)
    if not customer:
        return
    emailer.send_order_confirmation(
        customer.email,
        {
            "order_number": order.order_number,
            "restaurant_name": restaurant.name if restaurant else "",
            "items": "\n".join(f"x{it.get('quantity')} {it.get('name')}" for it in order.items or []),
            "total_amount": order.total_amount,
            "estimated_time": order.estimated_time,
            "delivery_address": _format_address(order.delivery_address),
        },
    )


def update_status(
    db: Session,
    hub: NotificationHub,
    emailer: Emailer,
    identity: Identity,
    order_id: int,
    new_status: str,
    expected_status: Optional[str] = None,
    reason: Optional[str] = None,
) -> Outcome[Order]:
    new = parse_status(new_status)
    order = get_order(db, order_id)
    ensure_actor_may_transition(identity, order, restaurant_owner_id(db, order.restaurant_id), new)

    result: TransitionResult = transition(db, order_id, new, expected_status=expected_status, reason=reason)
    outcome: Outcome[Order] = Outcome(result.order)
    if not result.changed:
        return outcome

    event = result.event
    try:
        hub.publish_status_change(
            event.order_id,
            event.status,
            audience=event.audience(),
            order_number=event.order_number,
            timestamp=event.timestamp.isoformat(),
        )
    except Exception as e:
        outcome.record_failure("status_notification", e)

    if event.status == OrderStatus.READY_FOR_PICKUP.value and result.order.delivery_partner_id is None:
        try:
            hub.publish_delivery_request(order_summary(result.order), location=result.order.delivery_address)
        except Exception as e:
            outcome.record_failure("delivery_request_notification", e)

    if event.status == OrderStatus.CONFIRMED.value:
        try:
            _send_confirmation(db, emailer, result.order)
        except EmailSendError as e:
            outcome.record_failure("order_confirmation_email", e)

    return outcome


# -------------------
# Delivery
# -------------------
def assign_delivery_partner(db: Session, identity: Identity, order_id: int) -> Order:
    authorize(identity, [Role.DELIVERY_PARTNER])
    now = utcnow()
    rows = (
        db.query(Order)
        .filter(
            Order.id == order_id,
            Order.status == OrderStatus.READY_FOR_PICKUP.value,
            Order.delivery_partner_id.is_(None),
        )
        .update(
            {Order.delivery_partner_id: identity.user_id, Order.updated_at: now, Order.version: Order.version + 1},
            synchronize_session=False,
        )
    )
    if rows == 1:
        db.commit()
        order = get_order(db, order_id)
        db.refresh(order)
        logger.info("order %s assigned to delivery partner %s", order.order_number, identity.user_id)
        return order

    db.rollback()
    order = get_order(db, order_id)
    db.refresh(order)
    if order.delivery_partner_id == identity.user_id:
        return order
    if order.delivery_partner_id is not None:
        raise Conflict("Order already has a delivery partner", code="ALREADY_ASSIGNED")
    raise Conflict(f"Order is {order.status}, not ready for pickup", code="INVALID_TRANSITION")


def update_location(
    db: Session,
    hub: NotificationHub,
    identity: Identity,
    order_id: int,
    coordinates: Dict[str, float],
) -> int:
    authorize(identity, [Role.DELIVERY_PARTNER, Role.ADMIN])
    order = get_order(db, order_id)
    if not identity.is_admin and order.delivery_partner_id != identity.user_id:
        raise Forbidden("Only the assigned delivery partner can report location", code="ACCESS_DENIED")
    if order.status != OrderStatus.OUT_FOR_DELIVERY.value:
        raise Conflict("Order is not out for delivery", code="ORDER_NOT_OUT_FOR_DELIVERY")
    return hub.publish_location_update(order.id, coordinates, audience=[channel_key("user", order.customer_id)])


# -------------------
# Payment
# -------------------
def update_payment_status(
    db: Session,
    identity: Identity,
    order_id: int,
    status: str,
    payment_order_ref: Optional[str] = None,
    payment_ref: Optional[str] = None,
) -> Order:
    authorize(identity, [Role.ADMIN])
    try:
        status = PaymentStatus(status).value
    except ValueError:
        raise ValidationFailed(f"Unknown payment status: {status}")
    order = get_order(db, order_id)
    db.refresh(order)
    current = order.payment_status
    if status == current:
        return order
    if status not in PAYMENT_TRANSITIONS.get(current, set()):
        raise Conflict(
            f"Cannot move payment from {current} to {status}",
            code="INVALID_TRANSITION",
            details={"from": current, "to": status},
        )

    values: Dict[Any, Any] = {
        Order.payment_status: status,
        Order.updated_at: utcnow(),
        Order.version: Order.version + 1,
    }
    if payment_order_ref is not None:
        values[Order.payment_order_ref] = payment_order_ref
    if payment_ref is not None:
        values[Order.payment_ref] = payment_ref

    rows = (
        db.query(Order)
        .filter(Order.id == order_id, Order.payment_status == current)
        .update(values, synchronize_session=False)
    )
    if rows != 1:
        db.rollback()
        raise Conflict("Payment status was changed by someone else", code="STATUS_CONFLICT")
    if status == PaymentStatus.REFUNDED.value and order.payment_method == PaymentMethod.WALLET.value:
        credit_wallet(db, order)
    db.commit()
    db.refresh(order)
    return order
