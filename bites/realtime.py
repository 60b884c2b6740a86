# bites/realtime.py
"""
Room-based fan-out of order events to live connections.

Single-process rooms: channel key -> connection ids, connection id ->
subscriber. Publishing is fire-and-forget and never blocks the caller; a
subscriber that cannot take a message is dropped without telling the
publisher. Nothing is stored for connections that are offline.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

logger = logging.getLogger("bites.realtime")

CHANNEL_KINDS = ("user", "restaurant", "delivery", "order")


def channel_key(kind: str, ident: Any) -> str:
    if kind not in CHANNEL_KINDS:
        raise ValueError(f"Unknown channel kind: {kind}")
    return f"{kind}:{ident}"


# every delivery partner listens here for orders waiting to be picked up
DELIVERY_REQUESTS = "delivery:requests"


def parse_channel(key: str) -> tuple[str, str]:
    kind, sep, ident = (key or "").partition(":")
    if not sep or kind not in CHANNEL_KINDS or not ident:
        raise ValueError(f"Invalid channel key: {key!r}")
    return kind, ident


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Subscriber(Protocol):
    def deliver(self, message: Dict[str, Any]) -> None: ...


class QueueSubscriber:
    """Hands messages to an asyncio queue owned by the connection's event loop.

    Safe to call from any thread.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: Optional[asyncio.Queue] = None):
        self.loop = loop
        self.queue: asyncio.Queue = queue or asyncio.Queue()

    def deliver(self, message: Dict[str, Any]) -> None:
        # raises RuntimeError once the loop is closed; the hub drops us then
        self.loop.call_soon_threadsafe(self.queue.put_nowait, message)


class NotificationHub:
    def __init__(self):
        self._lock = threading.RLock()
        self._channels: Dict[str, Set[str]] = defaultdict(set)
        self._subscribers: Dict[str, Subscriber] = {}
        self._memberships: Dict[str, Set[str]] = defaultdict(set)

    # -------------------
    # Connections / rooms
    # -------------------
    def connect(self, connection_id: str, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers[connection_id] = subscriber
        logger.debug("connection %s registered", connection_id)

    def disconnect(self, connection_id: str) -> None:
        with self._lock:
            self._subscribers.pop(connection_id, None)
            for key in self._memberships.pop(connection_id, set()):
                members = self._channels.get(key)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        del self._channels[key]
        logger.debug("connection %s removed", connection_id)

    def join_channel(self, connection_id: str, key: str) -> None:
        parse_channel(key)
        with self._lock:
            if connection_id not in self._subscribers:
                raise KeyError(f"Unknown connection: {connection_id}")
            self._channels[key].add(connection_id)
            self._memberships[connection_id].add(key)
        logger.debug("connection %s joined %s", connection_id, key)

    def leave_channel(self, connection_id: str, key: str) -> None:
        with self._lock:
            members = self._channels.get(key)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    del self._channels[key]
            self._memberships.get(connection_id, set()).discard(key)

    def members(self, key: str) -> Set[str]:
        with self._lock:
            return set(self._channels.get(key, set()))

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # -------------------
    # Publishing
    # -------------------
    def publish(self, channels: Iterable[str], message: Dict[str, Any]) -> int:
        """Deliver ``message`` once to every connection in any of ``channels``."""
        with self._lock:
            targets: List[tuple[str, Subscriber]] = []
            seen: Set[str] = set()
            for key in channels:
                for cid in self._channels.get(key, ()):
                    if cid in seen:
                        continue
                    seen.add(cid)
                    sub = self._subscribers.get(cid)
                    if sub is not None:
                        targets.append((cid, sub))

        delivered = 0
        dead: List[str] = []
        for cid, sub in targets:
            try:
                sub.deliver(message)
                delivered += 1
            except Exception as e:
                logger.debug("dropping connection %s: %s", cid, e)
                dead.append(cid)
        for cid in dead:
            self.disconnect(cid)

        logger.debug("published %s to %d connection(s)", message.get("type"), delivered)
        return delivered

    def publish_status_change(
        self,
        order_id: int,
        status: str,
        audience: Iterable[str] = (),
        order_number: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> int:
        message = {
            "type": "status_update",
            "orderId": order_id,
            "status": status,
            "timestamp": timestamp or _now_iso(),
        }
        if order_number:
            message["orderNumber"] = order_number
        return self.publish([channel_key("order", order_id), *audience], message)

    def publish_new_order(self, restaurant_id: int, order_summary: Dict[str, Any]) -> int:
        message = {
            "type": "new_order",
            "orderData": order_summary,
            "timestamp": _now_iso(),
        }
        return self.publish([channel_key("restaurant", restaurant_id)], message)

    def publish_location_update(self, order_id: int, coordinates: Dict[str, float], audience: Iterable[str] = ()) -> int:
        message = {
            "type": "location_update",
            "orderId": order_id,
            "location": coordinates,
            "timestamp": _now_iso(),
        }
        return self.publish([channel_key("order", order_id), *audience], message)

    def publish_delivery_request(self, order_summary: Dict[str, Any], location: Any = None) -> int:
        message = {
            "type": "delivery_request",
            "orderData": order_summary,
            "location": location,
            "timestamp": _now_iso(),
        }
        return self.publish([DELIVERY_REQUESTS], message)

    def close(self) -> None:
        with self._lock:
            self._channels.clear()
            self._subscribers.clear()
            self._memberships.clear()
