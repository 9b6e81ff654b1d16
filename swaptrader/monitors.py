# swaptrader/monitors.py
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List

from .circuit_breaker import CircuitBreaker
from .config import FilterConfig
from .endpoint_pool import EndpointPool
from .errors import BuyError, CircuitOpenError, EndpointDegraded, FeedUnavailable, TradingError
from .executor import TradeExecutor
from .feed_client import FeedClient
from .filters import filter_listings
from .ledger_client import LedgerClient
from .logger import format_number
from .models import ExitDecision, Listing
from .state import TradingState
from .status import StatusTicker

Sleep = Callable[[float], Awaitable[None]]


class DiscoveryMonitor:
    """
    Buy side: poll the feed, filter, and fan out one buy per accepted listing.
    """
    def __init__(
        self,
        config: dict,
        state: TradingState,
        feed: FeedClient,
        breaker: CircuitBreaker,
        executor: TradeExecutor,
        logger: logging.Logger,
        ticker: StatusTicker,
        sleep: Sleep = asyncio.sleep,
    ):
        self.state = state
        self.feed = feed
        self.breaker = breaker
        self.executor = executor
        self.logger = logger
        self.ticker = ticker
        self.sleep = sleep
        self.filter_config = FilterConfig.from_config(config)
        self.delay = float(config['trading']['scan_delay_seconds'])
        self.open_pause = float(config['circuit_breaker']['open_pause_seconds'])
        self.timeout_pause = float(config['circuit_breaker']['timeout_pause_seconds'])
        self.scan_count = 0

    async def fetch_listings(self) -> List[Listing]:
        try:
            return await self.breaker.execute(self.feed.latest_listings)
        except CircuitOpenError:
            self.logger.error("⛔ Circuit breaker triggered, pausing operations")
            await self.sleep(self.open_pause)
            return []
        except FeedUnavailable as e:
            self.logger.error(
                f"❌ Error fetching token data: {e} [{e.code}] status={e.status} timeout={e.timed_out}"
            )
            if e.timed_out:
                self.ticker.report(f"Waiting {self.timeout_pause:.0f} seconds before next token fetch attempt...")
                await self.sleep(self.timeout_pause)
            return []
        except TradingError as e:
            self.logger.error(f"❌ Error fetching token data: {e} [{e.code}]")
            return []

    async def run_once(self) -> int:
        """
        One scan. Returns how many buys were dispatched.
        """
        self.ticker.report("Scanning for new tokens...")
        listings = await self.fetch_listings()
        accepted = filter_listings(listings, self.filter_config, self.state.guards(), self.logger)

        self.scan_count += 1
        summary = (
            f"Token scan #{self.scan_count}: Found {format_number(len(listings), 0)} tokens, "
            f"{len(accepted)} passed filters"
        )
        self.logger.info(f"✅ {summary}" if accepted else summary)

        dispatched: List[Listing] = []
        for listing in accepted:
            if self.state.try_reserve_buy(listing.asset_id):
                self.ticker.report(f"Attempting to buy {listing.symbol}...")
                dispatched.append(listing)

        results = await asyncio.gather(
            *(self.executor.buy(listing) for listing in dispatched),
            return_exceptions=True,
        )
        for listing, result in zip(dispatched, results):
            if isinstance(result, BuyError):
                continue  # already narrated by the executor
            if isinstance(result, BaseException):
                self.state.release_buy(listing.asset_id)
                self.logger.error(
                    f"❌ Error buying token {listing.symbol}: {result}", exc_info=result
                )
        return len(dispatched)

    async def run(self):
        while True:
            await self.run_once()
            self.ticker.report("Waiting for next token scan...")
            await self.sleep(self.delay)


class PositionMonitor:
    """
    Sell side: re-check every open position each interval.
    """
    def __init__(
        self,
        config: dict,
        state: TradingState,
        executor: TradeExecutor,
        logger: logging.Logger,
        ticker: StatusTicker,
        sleep: Sleep = asyncio.sleep,
    ):
        self.state = state
        self.executor = executor
        self.logger = logger
        self.ticker = ticker
        self.sleep = sleep
        self.interval = float(config['trading']['monitor_interval_seconds'])

    async def run_once(self) -> Dict[str, ExitDecision]:
        asset_ids = self.state.store.ids()
        if not asset_ids:
            self.ticker.report("No active positions to monitor")
            return {}

        self.ticker.report(f"Monitoring {len(asset_ids)} active positions...")
        results = await asyncio.gather(
            *(self.executor.check_exit(asset_id) for asset_id in asset_ids),
            return_exceptions=True,
        )
        decisions: Dict[str, ExitDecision] = {}
        for asset_id, result in zip(asset_ids, results):
            if isinstance(result, BaseException):
                self.state.release_sell(asset_id)
                self.logger.error(f"❌ Error checking position {asset_id}: {result}", exc_info=result)
                continue
            decisions[asset_id] = result
        return decisions

    async def run(self):
        while True:
            await self.run_once()
            await self.sleep(self.interval)


class HealthSupervisor:
    """
    Keeps the ledger RPC usable: probes the active endpoint and rotates
    through the pool when it is down or too slow.
    """
    def __init__(
        self,
        config: dict,
        pool: EndpointPool,
        ledger: LedgerClient,
        logger: logging.Logger,
        ticker: StatusTicker,
        sleep: Sleep = asyncio.sleep,
    ):
        ledger_cfg = config['ledger']
        self.pool = pool
        self.ledger = ledger
        self.logger = logger
        self.ticker = ticker
        self.sleep = sleep
        self.interval = float(ledger_cfg['health_interval_seconds'])
        self.max_latency_ms = float(ledger_cfg['max_latency_ms'])
        self.attempt_delay = float(ledger_cfg['attempt_delay_seconds'])
        self.checks_count = 0

    async def check_connection(self) -> bool:
        """
        Tries up to two full cycles of the pool. True as soon as one
        endpoint answers within the latency budget.
        """
        max_attempts = self.pool.size * 2
        for attempt in range(max_attempts):
            self.ticker.report("Verifying RPC connection...")
            try:
                _, latency = await self.ledger.latest_block_reference()
                if latency < self.max_latency_ms:
                    self.logger.info(f"✅ RPC connection successful. Latency: {latency:.0f}ms")
                    return True
                self.logger.warning(f"⚠️ RPC response too slow ({latency:.0f}ms), rotating...")
                self.pool.rotate()
            except EndpointDegraded as e:
                self.logger.error(f"❌ RPC Connection Error: {e} [{e.code}]")
                self.pool.rotate()

            if attempt < max_attempts - 1:
                await self.sleep(self.attempt_delay)

        self.logger.error("❌ All RPC endpoints failed")
        return False

    async def ensure_connection(self):
        if not await self.check_connection():
            raise EndpointDegraded("All RPC endpoints failed", endpoint=self.pool.current())

    async def run(self):
        while True:
            self.checks_count += 1
            self.ticker.report(f"Performing RPC health check #{self.checks_count}...")
            # Total exhaustion propagates and restarts the whole bot.
            await self.ensure_connection()
            self.ticker.report("Waiting for next RPC health check...")
            await self.sleep(self.interval)
