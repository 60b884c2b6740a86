# bites/ordering/numbering.py
from __future__ import annotations

import threading
import time
from typing import Callable, Optional

PREFIX = "ORD"
SEQUENCE_SPAN = 10_000


class OrderNumberGenerator:
    """ORD<epoch-ms><4-digit sequence>, unique within the process.

    The sequence is a counter shared by all threads. When it wraps, the
    millisecond part is moved forward, so a (ms, seq) pair never repeats even
    if the wall clock stalls or steps back.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        self._lock = threading.Lock()
        self._last_ms = 0
        self._seq = 0

    def next(self) -> str:
        with self._lock:
            now_ms = int(self._clock() * 1000)
            if now_ms > self._last_ms:
                self._last_ms = now_ms
            self._seq += 1
            if self._seq >= SEQUENCE_SPAN:
                self._seq = 1
                self._last_ms += 1
            return f"{PREFIX}{self._last_ms}{self._seq:04d}"


_default = OrderNumberGenerator()


def next_order_number() -> str:
    return _default.next()
