# bites/accounts.py
"""
Account lifecycle: registration, login, token refresh, logout, email
verification and password reset.

Cache and email are collaborators with different weights: a failed cache
write or verification email is reported on the Outcome and the account is
still created, while a failed password-reset email is raised, since the
user has no other way to get the link.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .auth import (
    TokenPair,
    generate_opaque_token,
    hash_password,
    issue_token_pair,
    peek_user_id,
    rotate_from_refresh,
    verify_password,
    verify_refresh_token,
)
from .cache import SESSION_PREFIX, SessionCache, reset_key, session_key, verification_key
from .config import Settings
from .emailer import Emailer, EmailSendError
from .errors import AuthError, Conflict, DependencyUnavailable, NotFound, ValidationFailed
from .models import Role, User, utcnow
from .outcome import Outcome
from .profiles import create_profile
from .schemas import RegisterIn

logger = logging.getLogger("bites.accounts")

FORGOT_PASSWORD_MESSAGE = "If an account with this email exists, a password reset link has been sent"


@dataclass
class AuthResult:
    user: User
    access_token: str
    refresh_token: Optional[str] = None


def serialize_user(u: User) -> Dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "first_name": u.first_name,
        "last_name": u.last_name,
        "phone_number": u.phone_number,
        "role": u.role,
        "is_active": u.is_active,
        "is_verified": u.is_verified,
        "profile_picture": u.profile_picture,
    }


def session_snapshot(u: User) -> Dict[str, Any]:
    return {"userId": u.id, "email": u.email, "role": u.role, "isVerified": u.is_verified}


def _cache_session(cache: SessionCache, settings: Settings, user: User, outcome: Outcome) -> None:
    if not cache.set(session_key(user.id), session_snapshot(user), settings.session_ttl_seconds):
        outcome.record_failure("session_cache", f"user {user.id}")


# -------------------
# Register / login
# -------------------
def register(
    db: Session,
    cache: SessionCache,
    emailer: Emailer,
    settings: Settings,
    data: RegisterIn,
) -> Outcome[AuthResult]:
    existing = (
        db.query(User)
        .filter(or_(User.email == data.email, User.phone_number == data.phone_number))
        .first()
    )
    if existing:
        msg = "Email already registered" if existing.email == data.email else "Phone number already registered"
        raise Conflict(msg, code="USER_EXISTS")

    user = User(
        email=data.email,
        phone_number=data.phone_number,
        first_name=data.first_name,
        last_name=data.last_name,
        password_hash=hash_password(data.password),
        role=data.role,
        is_active=True,
        is_verified=False,
    )
    db.add(user)
    try:
        db.flush()
        if user.role == Role.CUSTOMER.value:
            create_profile(db, user.id, commit=False)
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent registration on the same email/phone
        db.rollback()
        raise Conflict("Email or phone number already registered", code="USER_EXISTS")
    db.refresh(user)

    tokens = issue_token_pair(user.id, user.email, user.role, settings)
    outcome: Outcome[AuthResult] = Outcome(AuthResult(user, tokens.access_token, tokens.refresh_token))

    verification_token = generate_opaque_token()
    if cache.set(verification_key(verification_token), user.id, settings.verification_ttl_seconds):
        try:
            emailer.send_verification_email(user.email, verification_token, name=user.full_name)
        except EmailSendError as e:
            outcome.record_failure("verification_email", e)
    else:
        outcome.record_failure("verification_token", "cache unavailable")

    _cache_session(cache, settings, user, outcome)
    logger.info("Registered user %s (%s)", user.id, user.role)
    return outcome


def login(db: Session, cache: SessionCache, settings: Settings, email: str, password: str) -> Outcome[AuthResult]:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        raise AuthError("Invalid email or password", code="INVALID_CREDENTIALS")
    if not user.is_active:
        raise AuthError("Your account has been deactivated", code="ACCOUNT_INACTIVE")
    if not verify_password(password, user.password_hash):
        raise AuthError("Invalid email or password", code="INVALID_CREDENTIALS")

    tokens: TokenPair = issue_token_pair(user.id, user.email, user.role, settings)
    outcome: Outcome[AuthResult] = Outcome(AuthResult(user, tokens.access_token, tokens.refresh_token))
    _cache_session(cache, settings, user, outcome)
    return outcome


def refresh(db: Session, cache: SessionCache, settings: Settings, refresh_token: Optional[str]) -> Outcome[AuthResult]:
    if not refresh_token:
        raise AuthError("Refresh token is required", code="NO_REFRESH_TOKEN")

    claims = verify_refresh_token(refresh_token, settings)
    user = db.get(User, int(claims["userId"]))
    if not user or not user.is_active:
        raise AuthError("Invalid refresh token", code="INVALID_TOKEN")

    access_token = rotate_from_refresh(refresh_token, settings)
    outcome: Outcome[AuthResult] = Outcome(AuthResult(user, access_token))
    _cache_session(cache, settings, user, outcome)
    return outcome


def logout(cache: SessionCache, refresh_token: Optional[str]) -> None:
    if not refresh_token:
        return
    user_id = peek_user_id(refresh_token)
    if user_id is not None:
        cache.delete(session_key(user_id))


def cached_session(cache: SessionCache, user_id: int) -> Optional[Dict[str, Any]]:
    return cache.get(session_key(user_id))


# -------------------
# Email verification / password reset
# -------------------
def _redeem(cache: SessionCache, key: str, what: str) -> int:
    # pop = lookup + delete in one step: a token works once
    user_id = cache.pop(key)
    if user_id is None:
        raise ValidationFailed(f"Invalid or expired {what} token", code="INVALID_TOKEN")
    return int(user_id)


def verify_email(db: Session, cache: SessionCache, settings: Settings, token: str) -> Outcome[User]:
    user_id = _redeem(cache, verification_key(token), "verification")

    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found", code="USER_NOT_FOUND")
    if user.is_verified:
        raise ValidationFailed("Email is already verified", code="ALREADY_VERIFIED")

    user.is_verified = True
    user.updated_at = utcnow()
    db.commit()
    db.refresh(user)

    outcome: Outcome[User] = Outcome(user)
    if cached_session(cache, user.id) is not None:
        _cache_session(cache, settings, user, outcome)
    return outcome


def forgot_password(db: Session, cache: SessionCache, emailer: Emailer, settings: Settings, email: str) -> None:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        # never reveal whether the address is registered
        return

    token = generate_opaque_token()
    key = reset_key(token)
    if not cache.set(key, user.id, settings.reset_ttl_seconds):
        raise DependencyUnavailable("Password reset is temporarily unavailable", code="EMAIL_SEND_FAILED")

    try:
        emailer.send_password_reset_email(user.email, token, name=user.full_name)
    except EmailSendError as e:
        cache.delete(key)
        logger.error("Password reset email to user %s failed: %s", user.id, e)
        raise DependencyUnavailable("Failed to send password reset email", code="EMAIL_SEND_FAILED")


def reset_password(db: Session, cache: SessionCache, token: str, new_password: str) -> User:
    user_id = _redeem(cache, reset_key(token), "reset")

    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found", code="USER_NOT_FOUND")

    user.password_hash = hash_password(new_password)
    user.updated_at = utcnow()
    db.commit()
    db.refresh(user)

    # force re-authentication everywhere
    cache.delete(session_key(user.id))
    return user


# -------------------
# Admin
# -------------------
def set_active(db: Session, cache: SessionCache, user_id: int, active: bool) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFound("User not found", code="USER_NOT_FOUND")
    user.is_active = active
    user.updated_at = utcnow()
    db.commit()
    db.refresh(user)
    if not active:
        cache.delete(session_key(user.id))
    return user


def flush_sessions(cache: SessionCache) -> int:
    return cache.delete_pattern(f"{SESSION_PREFIX}*")
