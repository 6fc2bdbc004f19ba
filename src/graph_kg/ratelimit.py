"""Token-bucket pacing for outbound embedding calls."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class TokenBucket:
    """
    Blocking token bucket.

    :param rate: Tokens refilled per second.
    :param capacity: Maximum burst size.
    :param clock: Monotonic clock (injectable for tests).
    :param sleep: Sleep function (injectable for tests).
    """

    rate: float
    capacity: float
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep
    tokens: float = field(init=False)
    last_refill: float = field(init=False)
    _lock: threading.Lock = field(init=False, repr=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        if self.rate <= 0 or self.capacity <= 0:
            raise ValueError("rate and capacity must be positive")
        self.tokens = float(self.capacity)
        self.last_refill = self.clock()

    def _refill(self) -> None:
        now = self.clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self.last_refill = now

    def consume(self, amount: float = 1.0) -> bool:
        """Take *amount* tokens if available; never blocks."""
        with self._lock:
            self._refill()
            if self.tokens >= amount:
                self.tokens -= amount
                return True
            return False

    def acquire(self, amount: float = 1.0) -> float:
        """
        Block until *amount* tokens are available, then take them.

        :return: Total seconds spent waiting.
        """
        if amount > self.capacity:
            raise ValueError("amount exceeds bucket capacity")
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self.tokens >= amount:
                    self.tokens -= amount
                    return waited
                delay = (amount - self.tokens) / self.rate
            self.sleep(delay)
            waited += delay
