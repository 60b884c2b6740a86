# bites/main.py
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager, suppress
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import Cookie, Depends, FastAPI, Query, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from . import accounts, profiles
from .cache import SessionCache, cart_key
from .config import Settings, configure_logging, get_settings
from .db import get_db, init_db
from .emailer import Emailer
from .errors import AppError, DependencyUnavailable, ValidationFailed, install_error_handlers, ok
from .guards import (
    Identity,
    authenticate_token,
    authorize,
    current_identity,
    ensure_owner,
    is_owner_or_admin,
    optional_identity,
)
from .models import Order, Restaurant, Role, User
from .ordering import cart as carts
from .ordering import menu_store, service
from .realtime import DELIVERY_REQUESTS, NotificationHub, QueueSubscriber, channel_key, parse_channel
from .schemas import (
    ActiveIn,
    AddressIn,
    CartCouponIn,
    CartIn,
    CartItemIn,
    CartQuantityIn,
    CouponIn,
    ForgotPasswordIn,
    LocationIn,
    LoginIn,
    MenuItemIn,
    PaymentStatusIn,
    PlaceOrderIn,
    PreferencesIn,
    RegisterIn,
    ResetPasswordIn,
    RestaurantIn,
    StatusIn,
    TokenIn,
)

logger = logging.getLogger("bites.main")

settings = get_settings()
configure_logging(settings.log_level)

REFRESH_COOKIE = "refreshToken"


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    app.state.cache = SessionCache.connect(settings.redis_url)
    app.state.hub = NotificationHub()
    app.state.emailer = Emailer(settings)
    logger.info("bites api started (env=%s)", settings.app_env)
    try:
        yield
    finally:
        app.state.hub.close()
        app.state.cache.close()


app = FastAPI(title="Bites Order API", lifespan=lifespan)
install_error_handlers(app, settings)


# -------------------
# Shared collaborators (set up in lifespan)
# -------------------
def get_cache(request: Request) -> SessionCache:
    return request.app.state.cache


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


def get_emailer(request: Request) -> Emailer:
    return request.app.state.emailer


# -------------------
# Helpers
# -------------------
def _set_refresh_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        max_age=settings.jwt_refresh_expire_days * 24 * 60 * 60,
        path="/",
    )


def _auth_payload(result: accounts.AuthResult) -> Dict[str, Any]:
    return {"user": accounts.serialize_user(result.user), "accessToken": result.access_token}


def _load_user_cart(cache: SessionCache, user_id: int) -> Dict[str, Any]:
    return carts.load_cart(cache.get(cart_key(user_id)))


def _save_user_cart(cache: SessionCache, settings: Settings, user_id: int, cart: Dict[str, Any]) -> None:
    if not cache.set(cart_key(user_id), cart, settings.session_ttl_seconds):
        raise DependencyUnavailable("Cart storage is unavailable, please retry", code="CART_UNAVAILABLE")


def _cart_view(cart: Dict[str, Any], tax_rate: float) -> Dict[str, Any]:
    summary, _total = carts.build_summary(cart, tax_rate=tax_rate)
    return {"cart": cart, "totals": carts.cart_totals(cart, tax_rate).as_dict(), "summary": summary}


def _orders_out(orders: List[Order]) -> List[Dict[str, Any]]:
    return [service.serialize_order(o) for o in orders]


# -------------------
# Health
# -------------------
@app.get("/")
def root():
    return {"ok": True, "service": "bites-api"}


@app.get("/api/health")
def health(cache: SessionCache = Depends(get_cache), hub: NotificationHub = Depends(get_hub)):
    return ok({"cache": cache.available, "connections": hub.connection_count})


# -------------------
# Auth
# -------------------
@app.post("/api/auth/register", status_code=201)
def register(
    payload: RegisterIn,
    response: Response,
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    emailer: Emailer = Depends(get_emailer),
    settings: Settings = Depends(get_settings),
):
    outcome = accounts.register(db, cache, emailer, settings, payload)
    _set_refresh_cookie(response, outcome.value.refresh_token, settings)
    return ok(
        _auth_payload(outcome.value),
        message="User registered successfully. Please check your email to verify your account.",
        warnings=outcome.failed_side_effects,
    )


@app.post("/api/auth/login")
def login(
    payload: LoginIn,
    response: Response,
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    outcome = accounts.login(db, cache, settings, payload.email, payload.password)
    _set_refresh_cookie(response, outcome.value.refresh_token, settings)
    return ok(_auth_payload(outcome.value), message="Login successful", warnings=outcome.failed_side_effects)


@app.post("/api/auth/refresh-token")
def refresh_token(
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
):
    outcome = accounts.refresh(db, cache, settings, refresh_cookie)
    return ok({"accessToken": outcome.value.access_token}, warnings=outcome.failed_side_effects)


@app.post("/api/auth/logout")
def logout(
    response: Response,
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
    refresh_cookie: str | None = Cookie(default=None, alias=REFRESH_COOKIE),
):
    accounts.logout(cache, refresh_cookie)
    response.delete_cookie(REFRESH_COOKIE, path="/", secure=settings.cookie_secure, httponly=True, samesite="strict")
    return ok(message="Logout successful")


@app.post("/api/auth/verify-email")
def verify_email(
    payload: TokenIn,
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    outcome = accounts.verify_email(db, cache, settings, payload.token)
    return ok(
        {"user": accounts.serialize_user(outcome.value)},
        message="Email verified successfully",
        warnings=outcome.failed_side_effects,
    )


@app.post("/api/auth/forgot-password")
def forgot_password(
    payload: ForgotPasswordIn,
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    emailer: Emailer = Depends(get_emailer),
    settings: Settings = Depends(get_settings),
):
    accounts.forgot_password(db, cache, emailer, settings, payload.email)
    return ok(message=accounts.FORGOT_PASSWORD_MESSAGE)


@app.post("/api/auth/reset-password")
def reset_password(
    payload: ResetPasswordIn,
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
):
    accounts.reset_password(db, cache, payload.token, payload.new_password)
    return ok(message="Password reset successfully. Please log in with your new password.")


@app.get("/api/auth/me")
def me(
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
):
    user = db.get(User, identity.user_id)
    return ok({"user": accounts.serialize_user(user), "session": accounts.cached_session(cache, identity.user_id)})


# -------------------
# Admin
# -------------------
@app.patch("/api/admin/users/{user_id}/active")
def set_user_active(
    user_id: int,
    payload: ActiveIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
):
    authorize(identity, [Role.ADMIN])
    user = accounts.set_active(db, cache, user_id, payload.is_active)
    return ok({"user": accounts.serialize_user(user)})


@app.post("/api/admin/sessions/flush")
def flush_sessions(identity: Identity = Depends(current_identity), cache: SessionCache = Depends(get_cache)):
    authorize(identity, [Role.ADMIN])
    return ok({"deleted": accounts.flush_sessions(cache)})


@app.post("/api/admin/coupons", status_code=201)
def create_coupon(payload: CouponIn, identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    return ok({"coupon": menu_store.serialize_coupon(menu_store.create_coupon(db, identity, payload))})


# -------------------
# Customer profile
# -------------------
def _own_profile(identity: Identity, db: Session):
    authorize(identity, [Role.CUSTOMER])
    return profiles.get_profile(db, identity.user_id)


@app.get("/api/profile")
def get_profile(identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    return ok({"profile": profiles.serialize_profile(_own_profile(identity, db))})


@app.post("/api/profile/addresses", status_code=201)
def add_address(payload: AddressIn, identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    p = profiles.add_address(db, _own_profile(identity, db), payload.model_dump())
    return ok({"profile": profiles.serialize_profile(p)})


@app.put("/api/profile/addresses/{index}")
def update_address(
    index: int,
    payload: AddressIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    p = profiles.update_address(db, _own_profile(identity, db), index, payload.model_dump())
    return ok({"profile": profiles.serialize_profile(p)})


@app.delete("/api/profile/addresses/{index}")
def remove_address(index: int, identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    p = profiles.remove_address(db, _own_profile(identity, db), index)
    return ok({"profile": profiles.serialize_profile(p)})


@app.post("/api/profile/addresses/{index}/default")
def set_default_address(index: int, identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    p = profiles.set_default_address(db, _own_profile(identity, db), index)
    return ok({"profile": profiles.serialize_profile(p)})


@app.patch("/api/profile/preferences")
def update_preferences(
    payload: PreferencesIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    p = profiles.update_preferences(db, _own_profile(identity, db), payload.model_dump())
    return ok({"profile": profiles.serialize_profile(p)})


# -------------------
# Restaurants / menu
# -------------------
@app.get("/api/restaurants")
def list_restaurants(db: Session = Depends(get_db)):
    return ok({"restaurants": [menu_store.serialize_restaurant(r) for r in menu_store.list_restaurants(db)]})


@app.post("/api/restaurants", status_code=201)
def create_restaurant(payload: RestaurantIn, identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    r = menu_store.create_restaurant(db, identity, payload)
    return ok({"restaurant": menu_store.serialize_restaurant(r)})


@app.get("/api/restaurants/{restaurant_id}/menu")
def restaurant_menu(
    restaurant_id: int,
    identity: Optional[Identity] = Depends(optional_identity),
    db: Session = Depends(get_db),
):
    r = menu_store.get_restaurant(db, restaurant_id)
    items = menu_store.list_menu(db, restaurant_id)
    # owners see sold-out dishes too, everyone else only what can be ordered
    if not (identity and is_owner_or_admin(identity, r.owner_id)):
        items = [mi for mi in items if mi.is_available]
    return ok({"items": [menu_store.serialize_menu_item(mi) for mi in items]})


@app.post("/api/restaurants/{restaurant_id}/menu", status_code=201)
def add_menu_item(
    restaurant_id: int,
    payload: MenuItemIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    mi = menu_store.add_menu_item(db, identity, restaurant_id, payload)
    return ok({"item": menu_store.serialize_menu_item(mi)})


@app.get("/api/restaurants/{restaurant_id}/orders")
def restaurant_orders(
    restaurant_id: int,
    status: str | None = Query(default=None),
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    r = menu_store.get_restaurant(db, restaurant_id)
    ensure_owner(identity, r.owner_id)
    return ok({"orders": _orders_out(service.list_orders_for_restaurant(db, restaurant_id, status))})


# -------------------
# Cart (server-side mirror, kept in the cache)
# -------------------
@app.get("/api/cart")
def get_cart(
    identity: Identity = Depends(current_identity),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    authorize(identity, [Role.CUSTOMER])
    return ok(_cart_view(_load_user_cart(cache, identity.user_id), settings.tax_rate))


@app.post("/api/cart/items")
def add_cart_item(
    payload: CartItemIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    authorize(identity, [Role.CUSTOMER])
    # price the single line against the live menu before it goes in the cart
    priced = service.price_cart(db, payload.restaurant_id, [payload], None, settings.tax_rate)
    line = priced.items[0]

    cart = _load_user_cart(cache, identity.user_id)
    carts.add_to_cart(
        cart,
        restaurant_id=priced.restaurant.id,
        menu_item_id=line["menu_item_id"],
        name=line["name"],
        price=line["price"],
        quantity=line["quantity"],
        customizations=line["customizations"],
    )
    carts.set_delivery_fee(cart, priced.restaurant.delivery_fee)
    _save_user_cart(cache, settings, identity.user_id, cart)
    return ok(_cart_view(cart, settings.tax_rate))


@app.patch("/api/cart/items/{menu_item_id}")
def update_cart_item(
    menu_item_id: int,
    payload: CartQuantityIn,
    identity: Identity = Depends(current_identity),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    authorize(identity, [Role.CUSTOMER])
    cart = carts.update_quantity(_load_user_cart(cache, identity.user_id), menu_item_id, payload.quantity)
    _save_user_cart(cache, settings, identity.user_id, cart)
    return ok(_cart_view(cart, settings.tax_rate))


@app.delete("/api/cart/items/{menu_item_id}")
def remove_cart_item(
    menu_item_id: int,
    identity: Identity = Depends(current_identity),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    authorize(identity, [Role.CUSTOMER])
    cart = carts.remove_from_cart(_load_user_cart(cache, identity.user_id), menu_item_id)
    _save_user_cart(cache, settings, identity.user_id, cart)
    return ok(_cart_view(cart, settings.tax_rate))


@app.post("/api/cart/coupon")
def apply_cart_coupon(
    payload: CartCouponIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    authorize(identity, [Role.CUSTOMER])
    cart = _load_user_cart(cache, identity.user_id)
    if not cart["items"]:
        raise ValidationFailed("Cart is empty", code="CART_EMPTY")
    coupon = service.resolve_coupon(db, payload.code, carts.cart_totals(cart, settings.tax_rate).subtotal)
    carts.apply_coupon(cart, coupon.code, coupon.discount)
    _save_user_cart(cache, settings, identity.user_id, cart)
    return ok(_cart_view(cart, settings.tax_rate))


@app.delete("/api/cart/coupon")
def remove_cart_coupon(
    identity: Identity = Depends(current_identity),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    authorize(identity, [Role.CUSTOMER])
    cart = carts.remove_coupon(_load_user_cart(cache, identity.user_id))
    _save_user_cart(cache, settings, identity.user_id, cart)
    return ok(_cart_view(cart, settings.tax_rate))


@app.delete("/api/cart")
def clear_cart(
    identity: Identity = Depends(current_identity),
    cache: SessionCache = Depends(get_cache),
    settings: Settings = Depends(get_settings),
):
    authorize(identity, [Role.CUSTOMER])
    cache.delete(cart_key(identity.user_id))
    return ok(_cart_view(carts.empty_cart(), settings.tax_rate))


@app.post("/api/cart/quote")
def quote_cart(
    payload: CartIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    priced = service.price_cart(db, payload.restaurant_id, payload.items, payload.coupon_code, settings.tax_rate)
    return ok(
        {
            "restaurant_id": priced.restaurant.id,
            "items": priced.items,
            "coupon_code": priced.coupon.code if priced.coupon else None,
            "pricing": priced.totals.as_dict(),
        }
    )


# -------------------
# Orders
# -------------------
@app.post("/api/orders", status_code=201)
def place_order(
    payload: PlaceOrderIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    cache: SessionCache = Depends(get_cache),
    hub: NotificationHub = Depends(get_hub),
    settings: Settings = Depends(get_settings),
):
    outcome = service.place_order(db, hub, identity, payload, settings.tax_rate)
    cache.delete(cart_key(identity.user_id))
    return ok(
        {"order": service.serialize_order(outcome.value)},
        message="Order placed successfully",
        warnings=outcome.failed_side_effects,
    )


@app.get("/api/orders")
def my_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    authorize(identity, [Role.CUSTOMER])
    return ok({"orders": _orders_out(service.list_orders_for_customer(db, identity.user_id, page, limit))})


@app.get("/api/orders/{order_id}")
def get_order(order_id: int, identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    order = service.get_order(db, order_id)
    service.ensure_can_view(db, identity, order)
    return ok({"order": service.serialize_order(order)})


@app.patch("/api/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    payload: StatusIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
    emailer: Emailer = Depends(get_emailer),
):
    outcome = service.update_status(
        db,
        hub,
        emailer,
        identity,
        order_id,
        payload.status,
        expected_status=payload.expected_status,
        reason=payload.reason,
    )
    return ok(
        {"order": service.serialize_order(outcome.value)},
        message=f"Order status is {outcome.value.status}",
        warnings=outcome.failed_side_effects,
    )


@app.post("/api/orders/{order_id}/assign")
def assign_order(order_id: int, identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    order = service.assign_delivery_partner(db, identity, order_id)
    return ok({"order": service.serialize_order(order)})


@app.patch("/api/orders/{order_id}/payment")
def update_payment(
    order_id: int,
    payload: PaymentStatusIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    order = service.update_payment_status(
        db,
        identity,
        order_id,
        payload.status.value,
        payment_order_ref=payload.payment_order_ref,
        payment_ref=payload.payment_ref,
    )
    return ok({"order": service.serialize_order(order)})


@app.post("/api/orders/{order_id}/location")
def report_location(
    order_id: int,
    payload: LocationIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
    hub: NotificationHub = Depends(get_hub),
):
    delivered = service.update_location(db, hub, identity, order_id, payload.coordinates.model_dump())
    return ok({"delivered_to": delivered})


# -------------------
# Delivery partners
# -------------------
@app.get("/api/delivery/available-orders")
def available_orders(identity: Identity = Depends(current_identity), db: Session = Depends(get_db)):
    authorize(identity, [Role.DELIVERY_PARTNER, Role.ADMIN])
    return ok({"orders": _orders_out(service.list_available_for_pickup(db))})


@app.get("/api/delivery/orders")
def my_deliveries(
    status: str | None = Query(default=None),
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    authorize(identity, [Role.DELIVERY_PARTNER])
    return ok({"orders": _orders_out(service.list_orders_for_delivery_partner(db, identity.user_id, status))})


# -------------------
# Live notifications
# -------------------
def _home_channels(db: Session, identity: Identity) -> List[str]:
    keys = [channel_key("user", identity.user_id)]
    if identity.role == Role.DELIVERY_PARTNER.value:
        keys.append(channel_key("delivery", identity.user_id))
        keys.append(DELIVERY_REQUESTS)
    if identity.role == Role.RESTAURANT_PARTNER.value:
        owned = db.query(Restaurant.id).filter(Restaurant.owner_id == identity.user_id).all()
        keys.extend(channel_key("restaurant", rid) for (rid,) in owned)
    return keys


def _may_join(db: Session, identity: Identity, key: str) -> bool:
    kind, ident = parse_channel(key)
    if identity.is_admin:
        return True
    if kind == "user":
        return ident == str(identity.user_id)
    if kind == "delivery":
        return identity.role == Role.DELIVERY_PARTNER.value and (ident == str(identity.user_id) or key == DELIVERY_REQUESTS)
    if not ident.isdigit():
        return False
    if kind == "restaurant":
        r = db.get(Restaurant, int(ident))
        return r is not None and r.owner_id == identity.user_id
    order = db.get(Order, int(ident))
    if order is None:
        return False
    return service.is_involved(identity, order, service.restaurant_owner_id(db, order.restaurant_id))


def _handle_ws_message(
    db: Session,
    hub: NotificationHub,
    identity: Identity,
    connection_id: str,
    raw: str,
) -> Dict[str, Any]:
    try:
        msg = json.loads(raw)
    except ValueError:
        return {"type": "error", "code": "VALIDATION_ERROR", "message": "Messages must be JSON"}
    if not isinstance(msg, dict):
        return {"type": "error", "code": "VALIDATION_ERROR", "message": "Messages must be JSON objects"}

    action = msg.get("action")
    key = str(msg.get("channel") or "")
    if action not in ("join", "leave"):
        return {"type": "error", "code": "VALIDATION_ERROR", "message": f"Unknown action: {action}"}

    if action == "leave":
        hub.leave_channel(connection_id, key)
        return {"type": "ack", "action": "leave", "channel": key}

    db.expire_all()
    try:
        allowed = _may_join(db, identity, key)
    except ValueError as e:
        return {"type": "error", "code": "VALIDATION_ERROR", "message": str(e)}
    if not allowed:
        return {"type": "error", "code": "ACCESS_DENIED", "message": f"Cannot join {key}"}
    hub.join_channel(connection_id, key)
    return {"type": "ack", "action": "join", "channel": key}


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


@app.websocket("/ws")
async def notifications(
    websocket: WebSocket,
    token: str | None = Query(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    await websocket.accept()
    try:
        identity = await run_in_threadpool(authenticate_token, db, token, settings)
    except AppError as e:
        await websocket.send_json({"type": "error", "code": e.code, "message": e.message})
        await websocket.close(code=4401)
        return

    hub: NotificationHub = websocket.app.state.hub
    connection_id = uuid4().hex
    subscriber = QueueSubscriber(asyncio.get_running_loop())
    hub.connect(connection_id, subscriber)
    channels = await run_in_threadpool(_home_channels, db, identity)
    for key in channels:
        hub.join_channel(connection_id, key)
    await websocket.send_json({"type": "connected", "userId": identity.user_id, "channels": channels})

    writer = asyncio.create_task(_pump(websocket, subscriber.queue))
    try:
        while True:
            raw = await websocket.receive_text()
            reply = await run_in_threadpool(_handle_ws_message, db, hub, identity, connection_id, raw)
            # replies share the event queue so they stay ordered with pushed events
            subscriber.queue.put_nowait(reply)
    except WebSocketDisconnect:
        logger.debug("websocket %s closed by user %s", connection_id, identity.user_id)
    finally:
        hub.disconnect(connection_id)
        writer.cancel()
        with suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            await writer


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("bites.main:app", host="0.0.0.0", port=8000, reload=settings.is_development)
