# swaptrader/status.py
import logging
import time
from typing import Callable, Optional


def format_duration(seconds: float) -> str:
    total = int(seconds)
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h {minutes}m {secs}s"


class StatusTicker:
    """
    Progress narration throttled to one line per `interval` seconds.
    Calls inside the window are dropped, nothing is queued.
    """
    def __init__(
        self,
        logger: logging.Logger,
        interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.logger = logger
        self.interval = interval
        self.clock = clock
        self.start_time = clock()
        self.last_update: Optional[float] = None

    def report(self, message: str) -> bool:
        now = self.clock()
        if self.last_update is not None and now - self.last_update < self.interval:
            return False
        self.last_update = now
        self.logger.info(f"[Runtime: {format_duration(now - self.start_time)}] {message}")
        return True
