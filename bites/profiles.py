# bites/profiles.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .errors import NotFound, ValidationFailed
from .models import CustomerProfile, utcnow

DEFAULT_PREFERENCES: Dict[str, Any] = {
    "veg_only": False,
    "favorite_cuisines": [],
    "dietary_restrictions": [],
}


def ensure_single_default(addresses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Exactly one default address whenever the list is non-empty; the first flagged one wins."""
    out = [dict(a) for a in addresses]
    seen = False
    for a in out:
        if a.get("is_default") and not seen:
            seen = True
            continue
        a["is_default"] = False
    if out and not seen:
        out[0]["is_default"] = True
    return out


def ensure_profile_invariants(profile: CustomerProfile) -> None:
    if (profile.wallet_balance or 0) < 0:
        raise ValidationFailed("Wallet balance cannot be negative")
    if (profile.loyalty_points or 0) < 0:
        raise ValidationFailed("Loyalty points cannot be negative")
    profile.addresses = ensure_single_default(profile.addresses or [])


def save_profile(db: Session, profile: CustomerProfile) -> CustomerProfile:
    ensure_profile_invariants(profile)
    profile.updated_at = utcnow()
    db.add(profile)
    db.commit()
    db.refresh(profile)
    return profile


def create_profile(db: Session, user_id: int, commit: bool = True) -> CustomerProfile:
    profile = CustomerProfile(
        user_id=user_id,
        addresses=[],
        preferences=dict(DEFAULT_PREFERENCES),
        wallet_balance=0.0,
        loyalty_points=0,
    )
    ensure_profile_invariants(profile)
    db.add(profile)
    if commit:
        db.commit()
        db.refresh(profile)
    return profile


def get_profile(db: Session, user_id: int) -> CustomerProfile:
    profile = db.query(CustomerProfile).filter(CustomerProfile.user_id == user_id).first()
    if not profile:
        raise NotFound("Customer profile not found", code="PROFILE_NOT_FOUND")
    return profile


def default_address(profile: CustomerProfile) -> Optional[Dict[str, Any]]:
    for a in profile.addresses or []:
        if a.get("is_default"):
            return dict(a)
    return None


def _address_at(profile: CustomerProfile, index: int) -> List[Dict[str, Any]]:
    addresses = [dict(a) for a in (profile.addresses or [])]
    if index < 0 or index >= len(addresses):
        raise NotFound("Address not found", code="ADDRESS_NOT_FOUND")
    return addresses


def add_address(db: Session, profile: CustomerProfile, address: Dict[str, Any]) -> CustomerProfile:
    addresses = [dict(a) for a in (profile.addresses or [])]
    new = dict(address)
    if new.get("is_default"):
        for a in addresses:
            a["is_default"] = False
    addresses.append(new)
    profile.addresses = addresses
    return save_profile(db, profile)


def update_address(db: Session, profile: CustomerProfile, index: int, address: Dict[str, Any]) -> CustomerProfile:
    addresses = _address_at(profile, index)
    new = dict(address)
    if new.get("is_default"):
        for a in addresses:
            a["is_default"] = False
    addresses[index] = new
    profile.addresses = addresses
    return save_profile(db, profile)


def remove_address(db: Session, profile: CustomerProfile, index: int) -> CustomerProfile:
    addresses = _address_at(profile, index)
    addresses.pop(index)
    profile.addresses = addresses
    return save_profile(db, profile)


def set_default_address(db: Session, profile: CustomerProfile, index: int) -> CustomerProfile:
    addresses = _address_at(profile, index)
    for i, a in enumerate(addresses):
        a["is_default"] = i == index
    profile.addresses = addresses
    return save_profile(db, profile)


def update_preferences(db: Session, profile: CustomerProfile, changes: Dict[str, Any]) -> CustomerProfile:
    prefs = dict(DEFAULT_PREFERENCES)
    prefs.update(profile.preferences or {})
    prefs.update({k: v for k, v in changes.items() if v is not None})
    profile.preferences = prefs
    return save_profile(db, profile)


def serialize_profile(profile: CustomerProfile) -> Dict[str, Any]:
    return {
        "user_id": profile.user_id,
        "addresses": profile.addresses or [],
        "preferences": profile.preferences or {},
        "wallet_balance": profile.wallet_balance,
        "loyalty_points": profile.loyalty_points,
    }
