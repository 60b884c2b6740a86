# bites/guards.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .auth import verify_access_token
from .config import Settings, get_settings
from .db import get_db
from .errors import AuthError, Forbidden
from .models import Role, User


@dataclass(frozen=True)
class Identity:
    user_id: int
    email: str
    role: str
    is_verified: bool

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    token = authorization.split(" ", 1)[1].strip()
    return token or None


def authenticate_token(db: Session, token: Optional[str], settings: Settings) -> Identity:
    """Resolve an access token to the *current* user row, not just its claims."""
    if not token:
        raise AuthError("Access token is required", code="NO_TOKEN")

    claims = verify_access_token(token, settings)

    try:
        user_id = int(claims["userId"])
    except (TypeError, ValueError):
        raise AuthError("Invalid access token", code="INVALID_TOKEN")

    user = db.get(User, user_id)
    if not user:
        raise AuthError("User not found", code="USER_NOT_FOUND")
    if not user.is_active:
        raise AuthError("User account is deactivated", code="USER_INACTIVE")
    if not user.is_verified:
        raise AuthError("Please verify your email address", code="USER_UNVERIFIED")

    return Identity(user_id=user.id, email=user.email, role=user.role, is_verified=user.is_verified)


def authenticate(db: Session, authorization: Optional[str], settings: Settings) -> Identity:
    return authenticate_token(db, bearer_token(authorization), settings)


def authorize(identity: Identity, roles: Iterable[Role | str]) -> Identity:
    allowed = {r.value if isinstance(r, Role) else r for r in roles}
    if identity.role not in allowed:
        raise Forbidden(
            "You do not have permission to access this resource",
            code="INSUFFICIENT_PERMISSIONS",
        )
    return identity


def is_owner_or_admin(identity: Identity, owner_id: Optional[int]) -> bool:
    return identity.is_admin or (owner_id is not None and identity.user_id == owner_id)


def ensure_owner(identity: Identity, owner_id: Optional[int]) -> Identity:
    if not is_owner_or_admin(identity, owner_id):
        raise Forbidden("You can only access your own resources", code="ACCESS_DENIED")
    return identity


# -------------------
# FastAPI dependencies
# -------------------
def current_identity(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Identity:
    return authenticate(db, authorization, settings)


def optional_identity(
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Optional[Identity]:
    try:
        return authenticate(db, authorization, settings)
    except AuthError:
        return None
