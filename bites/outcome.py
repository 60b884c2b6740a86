# bites/outcome.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Generic, List, TypeVar

T = TypeVar("T")

logger = logging.getLogger("bites.outcome")


@dataclass
class Outcome(Generic[T]):
    """Result of an operation whose core succeeded.

    Side effects that failed along the way (cache writes, emails, fan-out)
    are listed by name in ``failed_side_effects``; core failures are raised
    as ``AppError`` instead and never reach an Outcome.
    """

    value: T
    failed_side_effects: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.failed_side_effects)

    def record_failure(self, name: str, reason: object = None) -> None:
        self.failed_side_effects.append(name)
        logger.warning("side effect %s failed: %s", name, reason or "unknown")
