# bites/auth.py
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from .config import Settings
from .errors import AuthError

pwd = CryptContext(schemes=["argon2"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def hash_password(p: str) -> str:
    return pwd.hash(p)


def verify_password(p: str, h: Optional[str]) -> bool:
    # accounts without a stored hash never authenticate with a password
    if not h or not p:
        return False
    try:
        return pwd.verify(p, h)
    except (ValueError, TypeError):
        return False


def generate_opaque_token() -> str:
    """256 random bits, hex encoded (64 chars)."""
    return secrets.token_hex(32)


def _encode(claims: Dict[str, Any], secret: str, alg: str, lifetime: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = dict(claims)
    payload["iat"] = now
    payload["exp"] = now + lifetime
    return jwt.encode(payload, secret, algorithm=alg)


def create_access_token(user_id: int, email: str, role: str, settings: Settings) -> str:
    return _encode(
        {"userId": user_id, "email": email, "role": role, "type": ACCESS},
        settings.jwt_secret,
        settings.jwt_alg,
        timedelta(minutes=settings.jwt_expire_minutes),
    )


def create_refresh_token(user_id: int, email: str, role: str, settings: Settings) -> str:
    return _encode(
        {"userId": user_id, "email": email, "role": role, "type": REFRESH},
        settings.jwt_refresh_secret,
        settings.jwt_alg,
        timedelta(days=settings.jwt_refresh_expire_days),
    )


def issue_token_pair(user_id: int, email: str, role: str, settings: Settings) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(user_id, email, role, settings),
        refresh_token=create_refresh_token(user_id, email, role, settings),
    )


def _decode(token: str, secret: str, alg: str, expected_type: str) -> Dict[str, Any]:
    # exp is enforced by jose with no leeway
    data = jwt.decode(token, secret, algorithms=[alg])
    if data.get("type") != expected_type or data.get("userId") is None:
        raise JWTError("unexpected token type")
    return data


def verify_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    try:
        return _decode(token, settings.jwt_secret, settings.jwt_alg, ACCESS)
    except ExpiredSignatureError:
        raise AuthError("Access token has expired", code="TOKEN_EXPIRED")
    except JWTError:
        raise AuthError("Invalid access token", code="INVALID_TOKEN")


def verify_refresh_token(token: str, settings: Settings) -> Dict[str, Any]:
    try:
        return _decode(token, settings.jwt_refresh_secret, settings.jwt_alg, REFRESH)
    except JWTError:
        raise AuthError("Invalid or expired refresh token", code="INVALID_TOKEN")


def rotate_from_refresh(refresh_token: str, settings: Settings) -> str:
    """New access token from a refresh token; the refresh token itself is kept."""
    claims = verify_refresh_token(refresh_token, settings)
    return create_access_token(int(claims["userId"]), claims["email"], claims["role"], settings)


def peek_user_id(token: str) -> Optional[int]:
    """User id from a token without checking its signature or expiry."""
    try:
        data = jwt.get_unverified_claims(token)
        return int(data.get("userId"))
    except Exception:
        return None
