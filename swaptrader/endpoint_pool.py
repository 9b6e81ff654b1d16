# swaptrader/endpoint_pool.py
import logging
from typing import Iterable, List, Optional


class EndpointPool:
    """
    Ordered list of equivalent RPC endpoints with one active entry.
    Rotation is shared: every caller sees the new endpoint on its next current().
    Degraded endpoints are never removed, they come back after a full cycle.
    """
    def __init__(self, endpoints: Iterable[str], logger: Optional[logging.Logger] = None):
        unique: List[str] = []
        for ep in endpoints:
            ep = (ep or "").strip()
            if ep and ep not in unique:
                unique.append(ep)
        if not unique:
            raise ValueError("EndpointPool needs at least one endpoint")

        self.endpoints = unique
        self.index = 0
        self.logger = logger or logging.getLogger(__name__)

    def __len__(self) -> int:
        return len(self.endpoints)

    @property
    def size(self) -> int:
        return len(self.endpoints)

    def current(self) -> str:
        return self.endpoints[self.index]

    def rotate(self) -> str:
        # No await in here, so the read-modify-write cannot interleave on the loop.
        self.index = (self.index + 1) % len(self.endpoints)
        new_ep = self.endpoints[self.index]
        self.logger.info(f"🔄 Rotating to RPC endpoint: {new_ep}")
        return new_ep
