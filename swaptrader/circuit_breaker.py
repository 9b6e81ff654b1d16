# swaptrader/circuit_breaker.py
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from .errors import CircuitOpenError

T = TypeVar("T")


class CircuitBreaker:
    """
    Failure isolation around an unreliable dependency (the listings feed).

    Closed: calls pass through. After `threshold` consecutive failures the
    breaker opens and every call fails fast with CircuitOpenError, without
    touching the dependency, until `cooldown_seconds` have passed since the
    last failure. The next call after that is attempted live.
    """
    def __init__(
        self,
        threshold: int = 5,
        cooldown_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ):
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self.failures = 0
        self.last_failure: Optional[float] = None
        self.is_open = False

    async def execute(self, op: Callable[[], Awaitable[T]]) -> T:
        if self.is_open:
            elapsed = self.clock() - (self.last_failure or 0.0)
            if elapsed > self.cooldown_seconds:
                self.logger.info("🔌 Circuit breaker cool-down elapsed, retrying live")
                self.reset()
            else:
                raise CircuitOpenError("Circuit breaker is open")

        try:
            result = await op()
        except Exception:
            self.record_failure()
            raise
        self.reset()
        return result

    def record_failure(self):
        self.failures += 1
        self.last_failure = self.clock()
        if self.failures >= self.threshold and not self.is_open:
            self.is_open = True
            self.logger.critical(f"⛔ CIRCUIT OPEN: {self.failures} consecutive failures")

    def reset(self):
        self.failures = 0
        self.last_failure = None
        self.is_open = False
