# bites/ordering/menu_store.py
from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

from ..errors import Conflict, NotFound
from ..guards import Identity, authorize, ensure_owner
from ..models import Coupon, MenuItem, Restaurant, Role
from ..schemas import CouponIn, MenuItemIn, RestaurantIn


def get_restaurant(db: Session, restaurant_id: int) -> Restaurant:
    r = db.get(Restaurant, restaurant_id)
    if not r:
        raise NotFound("Restaurant not found", code="RESTAURANT_NOT_FOUND")
    return r


def list_restaurants(db: Session) -> List[Restaurant]:
    return db.query(Restaurant).filter(Restaurant.is_active.is_(True)).order_by(Restaurant.name.asc()).all()


def list_menu(db: Session, restaurant_id: int) -> List[MenuItem]:
    get_restaurant(db, restaurant_id)
    return db.query(MenuItem).filter(MenuItem.restaurant_id == restaurant_id).order_by(MenuItem.id.asc()).all()


def create_restaurant(db: Session, identity: Identity, data: RestaurantIn) -> Restaurant:
    authorize(identity, [Role.RESTAURANT_PARTNER, Role.ADMIN])
    r = Restaurant(owner_id=identity.user_id, name=data.name.strip(), delivery_fee=data.delivery_fee, is_active=True)
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


def add_menu_item(db: Session, identity: Identity, restaurant_id: int, data: MenuItemIn) -> MenuItem:
    r = get_restaurant(db, restaurant_id)
    ensure_owner(identity, r.owner_id)
    mi = MenuItem(
        restaurant_id=r.id,
        name=data.name.strip(),
        price=data.price,
        is_available=data.is_available,
        customizations=[g.model_dump() for g in data.customizations],
    )
    db.add(mi)
    db.commit()
    db.refresh(mi)
    return mi


def create_coupon(db: Session, identity: Identity, data: CouponIn) -> Coupon:
    authorize(identity, [Role.ADMIN])
    if db.query(Coupon).filter(Coupon.code == data.code).first():
        raise Conflict(f"Coupon {data.code} already exists", code="COUPON_EXISTS")
    c = Coupon(code=data.code, discount=data.discount, min_subtotal=data.min_subtotal, is_active=data.is_active)
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def serialize_restaurant(r: Restaurant) -> Dict[str, Any]:
    return {
        "id": r.id,
        "owner_id": r.owner_id,
        "name": r.name,
        "is_active": r.is_active,
        "delivery_fee": r.delivery_fee,
    }


def serialize_menu_item(mi: MenuItem) -> Dict[str, Any]:
    return {
        "id": mi.id,
        "restaurant_id": mi.restaurant_id,
        "name": mi.name,
        "price": mi.price,
        "is_available": mi.is_available,
        "customizations": mi.customizations or [],
    }


def serialize_coupon(c: Coupon) -> Dict[str, Any]:
    return {"code": c.code, "discount": c.discount, "min_subtotal": c.min_subtotal, "is_active": c.is_active}
