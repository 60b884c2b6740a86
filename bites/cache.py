# bites/cache.py
"""
Best-effort key/value cache for sessions and one-time tokens.

Every operation swallows store failures: a broken or missing redis makes the
service re-authenticate more often, it never fails the calling request.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import redis

logger = logging.getLogger("bites.cache")

SESSION_PREFIX = "session:"
VERIFICATION_PREFIX = "verification:"
RESET_PREFIX = "reset:"
CART_PREFIX = "cart:"


def session_key(user_id: int | str) -> str:
    return f"{SESSION_PREFIX}{user_id}"


def verification_key(token: str) -> str:
    return f"{VERIFICATION_PREFIX}{token}"


def reset_key(token: str) -> str:
    return f"{RESET_PREFIX}{token}"


def cart_key(user_id: int | str) -> str:
    return f"{CART_PREFIX}{user_id}"


class SessionCache:
    def __init__(self, client: Optional[redis.Redis] = None):
        self._client = client

    @classmethod
    def connect(cls, url: str, socket_timeout: float = 2.0) -> "SessionCache":
        """Open a client and check it answers; an unreachable store yields an empty cache."""
        try:
            client = redis.Redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
            )
            client.ping()
        except redis.RedisError as e:
            logger.warning("Redis unavailable at %s, continuing without cache: %s", url, e)
            return cls(None)
        logger.info("Redis cache connected: %s", url)
        return cls(client)

    @property
    def available(self) -> bool:
        return self._client is not None

    def close(self) -> None:
        if self._client is None:
            return
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.warning("Cache close error: %s", e)
        self._client = None

    def set(self, key: str, value: Any, ttl_seconds: int = 3600) -> bool:
        if self._client is None:
            return False
        try:
            self._client.set(key, json.dumps(value), ex=max(1, int(ttl_seconds)))
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.warning("Cache set error for %s: %s", key, e)
            return False

    def get(self, key: str) -> Any:
        if self._client is None:
            return None
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            logger.warning("Cache get error for %s: %s", key, e)
            return None
        return _decode(key, raw)

    def pop(self, key: str) -> Any:
        """Read and delete in one step, so a value can be consumed only once."""
        if self._client is None:
            return None
        try:
            raw = self._client.getdel(key)
        except redis.RedisError as e:
            logger.warning("Cache pop error for %s: %s", key, e)
            return None
        return _decode(key, raw)

    def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        try:
            self._client.delete(key)
            return True
        except redis.RedisError as e:
            logger.warning("Cache delete error for %s: %s", key, e)
            return False

    def delete_pattern(self, pattern: str) -> int:
        if self._client is None:
            return 0
        try:
            keys = list(self._client.scan_iter(match=pattern, count=500))
            if not keys:
                return 0
            return int(self._client.delete(*keys))
        except redis.RedisError as e:
            logger.warning("Cache delete pattern error for %s: %s", pattern, e)
            return 0


def _decode(key: str, raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Cache entry %s is not valid JSON, ignoring", key)
        return None
