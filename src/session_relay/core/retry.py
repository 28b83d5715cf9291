"""
Reconnect Retry Policy

Bounded exponential backoff with jitter, expressed as data so the session
controller schedules reconnects instead of recursing into ``initialize()``.
"""

import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional


@dataclass
class RetryPolicy:
    """Backoff schedule for reconnecting a dropped session"""
    max_attempts: int = 10          # 0 = unbounded
    base_delay: float = 1.0         # seconds before the first retry
    factor: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.5             # fraction of the delay randomized (0..1)

    def exhausted(self, attempt: int) -> bool:
        """True once ``attempt`` (1-based) exceeds the allowed attempts"""
        return self.max_attempts > 0 and attempt > self.max_attempts

    def delay_for(self, attempt: int, rand: Optional[Callable[[], float]] = None) -> float:
        """Delay before the given 1-based attempt"""
        rand = rand or random.random
        try:
            delay = min(self.max_delay, self.base_delay * (self.factor ** max(0, attempt - 1)))
        except OverflowError:
            delay = self.max_delay
        if self.jitter > 0 and delay > 0:
            spread = delay * self.jitter
            delay = delay - spread + (2 * spread * rand())
        return max(0.0, min(delay, self.max_delay))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryPolicy":
        return cls(
            max_attempts=int(data.get("max_attempts", 10)),
            base_delay=float(data.get("base_delay", 1.0)),
            factor=float(data.get("factor", 2.0)),
            max_delay=float(data.get("max_delay", 60.0)),
            jitter=float(data.get("jitter", 0.5)),
        )
