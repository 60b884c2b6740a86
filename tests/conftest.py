"""
Shared fixtures: a throwaway SQLite database per test, a fake redis behind
the session cache, an emailer that records instead of sending, and small
factories for users, restaurants and menus.
"""
from __future__ import annotations

import itertools
from types import SimpleNamespace
from typing import Any, Dict, List, Tuple

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from bites import main
from bites.auth import hash_password, issue_token_pair
from bites.cache import SessionCache
from bites.config import Settings, get_settings
from bites.db import get_db, init_db, make_engine
from bites.emailer import Emailer, EmailSendError
from bites.models import Coupon, MenuItem, Restaurant, Role, User
from bites.profiles import create_profile
from bites.realtime import NotificationHub

PASSWORD = "Secret123"


class RecordingEmailer(Emailer):
    """Renders every message like the real one, then keeps it instead of sending."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail = False

    def send(self, to: str, template_id: str, data: Dict[str, Any]) -> None:
        self.render(template_id, data)
        if self.fail:
            raise EmailSendError(f"Failed to send {template_id} email")
        self.sent.append((to, template_id, data))

    def last_token(self, template_id: str) -> str:
        for _to, tid, data in reversed(self.sent):
            if tid == template_id:
                return data["link"].rsplit("token=", 1)[1]
        raise AssertionError(f"no {template_id} email was sent")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        app_env="test",
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        cookie_secure=False,
        smtp_host="",
        tax_rate=0.05,
    )


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'bites-test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client) -> SessionCache:
    return SessionCache(redis_client)


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
def emailer(settings) -> RecordingEmailer:
    return RecordingEmailer(settings)


@pytest.fixture
def client(session_factory, settings, cache, hub, emailer):
    app = main.app

    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.state.cache = cache
    app.state.hub = hub
    app.state.emailer = emailer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# -------------------
# Factories
# -------------------
@pytest.fixture
def make_user(db):
    counter = itertools.count(1)

    def _make(role: Role = Role.CUSTOMER, verified: bool = True, active: bool = True, email: str | None = None) -> User:
        n = next(counter)
        u = User(
            email=email or f"user{n}@example.com",
            phone_number=f"9{n:09d}",
            first_name="Test",
            last_name=f"User{n}",
            password_hash=hash_password(PASSWORD),
            role=role.value,
            is_active=active,
            is_verified=verified,
        )
        db.add(u)
        db.flush()
        if role == Role.CUSTOMER:
            create_profile(db, u.id, commit=False)
        db.commit()
        db.refresh(u)
        return u

    return _make


@pytest.fixture
def auth_headers(settings):
    def _headers(user: User) -> Dict[str, str]:
        tokens = issue_token_pair(user.id, user.email, user.role, settings)
        return {"Authorization": f"Bearer {tokens.access_token}"}

    return _headers


@pytest.fixture
def menu(db, make_user):
    """Restaurant with a delivery fee of 20, two dishes and a SAVE15 coupon."""
    owner = make_user(Role.RESTAURANT_PARTNER)
    restaurant = Restaurant(owner_id=owner.id, name="Spice Route", delivery_fee=20.0, is_active=True)
    db.add(restaurant)
    db.flush()

    thali = MenuItem(restaurant_id=restaurant.id, name="Veg Thali", price=100.0, is_available=True, customizations=[])
    dosa = MenuItem(
        restaurant_id=restaurant.id,
        name="Masala Dosa",
        price=50.0,
        is_available=True,
        customizations=[{"name": "Extra", "options": [{"option": "Cheese", "price": 10.0}, {"option": "Ghee", "price": 5.0}]}],
    )
    sold_out = MenuItem(restaurant_id=restaurant.id, name="Biryani", price=180.0, is_available=False, customizations=[])
    coupon = Coupon(code="SAVE15", discount=15.0, min_subtotal=100.0, is_active=True)
    db.add_all([thali, dosa, sold_out, coupon])
    db.commit()
    for obj in (restaurant, thali, dosa, sold_out):
        db.refresh(obj)
    return SimpleNamespace(owner=owner, restaurant=restaurant, thali=thali, dosa=dosa, sold_out=sold_out, coupon=coupon)


ADDRESS = {
    "type": "home",
    "street_address": "12 MG Road",
    "landmark": "Near the park",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
    "coordinates": {"latitude": 12.97, "longitude": 77.59},
    "is_default": True,
}


def order_payload(menu, **overrides) -> Dict[str, Any]:
    """Two thalis plus a dosa with cheese: subtotal 260 before fee, tax and coupon."""
    body: Dict[str, Any] = {
        "restaurant_id": menu.restaurant.id,
        "items": [
            {"menu_item_id": menu.thali.id, "quantity": 2},
            {
                "menu_item_id": menu.dosa.id,
                "quantity": 1,
                "customizations": [{"name": "Extra", "option": "Cheese"}],
            },
        ],
        "coupon_code": "SAVE15",
        "delivery": {"address": ADDRESS, "estimated_time": 30, "instructions": "Ring twice"},
        "payment_method": "cash_on_delivery",
    }
    body.update(overrides)
    return body
