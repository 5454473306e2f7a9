"""Retry delay strategies for failed jobs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class BackoffStrategy(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class Backoff:
    """Delay before a failed job is retried.

    fixed: ``delay`` every time.
    exponential: ``delay * 2 ** attempts`` where ``attempts`` is the number of
    attempts already made, capped at ``max_delay``.
    """

    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    delay: float = 1.0
    max_delay: float | None = None

    def delay_for(self, attempts: int) -> float:
        if self.strategy is BackoffStrategy.FIXED:
            value = self.delay
        else:
            value = self.delay * 2 ** max(attempts, 0)
        if self.max_delay is not None:
            value = min(value, self.max_delay)
        return value

    def to_dict(self) -> dict[str, Any]:
        return {"strategy": self.strategy.value, "delay": self.delay, "max_delay": self.max_delay}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Backoff:
        return cls(
            strategy=BackoffStrategy(data.get("strategy", BackoffStrategy.EXPONENTIAL.value)),
            delay=float(data.get("delay", 1.0)),
            max_delay=data.get("max_delay"),
        )
