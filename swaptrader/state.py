# swaptrader/state.py
import logging
from typing import Optional, Set

from .models import Guards, Lifecycle, Position
from .position_store import PositionStore


class TradingState:
    """
    Shared state of the running bot: the position store and the guard sets.

    seen     assets bought at least once this run (never re-bought)
    buying   assets with a buy in flight
    selling  assets with a sell in flight

    Reserve/release are synchronous (no await between check and insert),
    which is what makes them mutually exclusive on the event loop.
    """
    def __init__(self, store: PositionStore, logger: Optional[logging.Logger] = None):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)
        self.seen: Set[str] = set()
        self.buying: Set[str] = set()
        self.selling: Set[str] = set()

    async def load(self):
        await self.store.load()
        await self.store.load_closed()
        self.seen = set(self.store.ids())

    def guards(self) -> Guards:
        return Guards(seen=frozenset(self.seen), buying=frozenset(self.buying))

    def lifecycle(self, asset_id: str) -> Lifecycle:
        if asset_id in self.buying:
            return Lifecycle.BUYING
        if asset_id in self.selling:
            return Lifecycle.SELLING
        if asset_id in self.store:
            return Lifecycle.OPEN
        if asset_id in self.seen:
            return Lifecycle.CLOSED
        return Lifecycle.UNSEEN

    # --- buy side ---

    def try_reserve_buy(self, asset_id: str) -> bool:
        if (
            asset_id in self.buying
            or asset_id in self.seen
            or asset_id in self.selling
            or asset_id in self.store
        ):
            return False
        self.buying.add(asset_id)
        return True

    def release_buy(self, asset_id: str):
        self.buying.discard(asset_id)

    async def complete_buy(self, position: Position) -> bool:
        # Released and inserted with no await in between.
        self.seen.add(position.asset_id)
        self.buying.discard(position.asset_id)
        return await self.store.upsert(position.asset_id, position)

    # --- sell side ---

    def try_reserve_sell(self, asset_id: str) -> bool:
        if asset_id in self.selling or asset_id not in self.store:
            return False
        self.selling.add(asset_id)
        return True

    def release_sell(self, asset_id: str):
        self.selling.discard(asset_id)

    async def complete_sell(self, asset_id: str) -> Optional[Position]:
        self.selling.discard(asset_id)
        return await self.store.remove(asset_id)
