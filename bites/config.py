# bites/config.py
from __future__ import annotations

import logging
import os
from functools import lru_cache

from pydantic import BaseModel

# Load .env locally (safe in prod too)
try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except Exception:
        return default


# -------------------
# Config (env-driven)
# -------------------
class Settings(BaseModel):
    app_env: str = os.getenv("APP_ENV", "development").strip().lower()
    log_level: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()

    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./bites.db")
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_refresh_secret: str = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me")
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")
    jwt_expire_minutes: int = _env_int("JWT_EXPIRE_MIN", 15)
    jwt_refresh_expire_days: int = _env_int("JWT_REFRESH_EXPIRE_DAYS", 7)

    session_ttl_seconds: int = _env_int("SESSION_TTL_SEC", 7 * 24 * 60 * 60)
    verification_ttl_seconds: int = _env_int("VERIFICATION_TTL_SEC", 24 * 60 * 60)
    reset_ttl_seconds: int = _env_int("RESET_TTL_SEC", 60 * 60)

    tax_rate: float = _env_float("TAX_RATE", 0.05)

    app_url: str = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
    smtp_host: str = os.getenv("SMTP_HOST", "").strip()
    smtp_port: int = _env_int("SMTP_PORT", 587)
    smtp_user: str = os.getenv("SMTP_USER", "").strip()
    smtp_password: str = os.getenv("SMTP_PASSWORD", "").strip()
    mail_from: str = os.getenv("MAIL_FROM", "no-reply@bites.local")

    cookie_secure: bool = _env_bool(
        "COOKIE_SECURE", os.getenv("APP_ENV", "development").strip().lower() != "development"
    )

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
