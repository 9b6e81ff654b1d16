# main.py
import asyncio
import os
import sys
from typing import Optional

from swaptrader.circuit_breaker import CircuitBreaker
from swaptrader.config import endpoint_list, load_config
from swaptrader.endpoint_pool import EndpointPool
from swaptrader.errors import EndpointDegraded
from swaptrader.execution import SwapExecutionService
from swaptrader.executor import TradeExecutor
from swaptrader.feed_client import FeedClient
from swaptrader.ledger_client import LedgerClient
from swaptrader.logger import AsyncAuditLogger, setup_console_logger
from swaptrader.monitors import DiscoveryMonitor, HealthSupervisor, PositionMonitor
from swaptrader.position_store import PositionStore
from swaptrader.state import TradingState
from swaptrader.status import StatusTicker


# --- MAIN CONTROLLER ---

class TradingBot:
    """
    Owns every component and supervises the three long-lived loops
    (discovery, position monitoring, RPC health). Any uncaught error tears
    the loops down, waits `restart_delay_seconds` and starts them again.
    """
    def __init__(
        self,
        config: dict,
        logger=None,
        feed: Optional[FeedClient] = None,
        execution: Optional[SwapExecutionService] = None,
        ledger: Optional[LedgerClient] = None,
        sleep=asyncio.sleep,
    ):
        self.config = config
        system = config['system']
        self.logger = logger or setup_console_logger("SwapTrader", system['log_level'], system['log_file'])
        self.sleep = sleep
        self.restart_delay = float(system['restart_delay_seconds'])

        self.ticker = StatusTicker(self.logger, float(system['status_interval_seconds']))
        self.pool = EndpointPool(endpoint_list(config), self.logger)
        cb = config['circuit_breaker']
        self.breaker = CircuitBreaker(
            threshold=int(cb['threshold']),
            cooldown_seconds=float(cb['cooldown_seconds']),
            logger=self.logger,
        )

        persistence = config['persistence']
        self.store = PositionStore(persistence['positions_file'], persistence['sold_positions_file'], self.logger)
        self.state = TradingState(self.store, self.logger)
        self.audit_log = AsyncAuditLogger(config['audit']['trade_log'])

        self.feed = feed or FeedClient(config, self.logger)
        self.ledger = ledger or LedgerClient(config, self.pool, self.logger)
        self.execution = execution or SwapExecutionService(config, self.logger)

        self.executor = TradeExecutor(
            config, self.state, self.feed, self.execution, self.ledger,
            self.logger, ticker=self.ticker, audit_logger=self.audit_log,
        )
        self.discovery = DiscoveryMonitor(
            config, self.state, self.feed, self.breaker, self.executor,
            self.logger, self.ticker, sleep=sleep,
        )
        self.position_monitor = PositionMonitor(
            config, self.state, self.executor, self.logger, self.ticker, sleep=sleep,
        )
        self.health = HealthSupervisor(
            config, self.pool, self.ledger, self.logger, self.ticker, sleep=sleep,
        )

        self.running = False
        self.initialized = False
        self.sessions = 0

    async def preflight(self) -> bool:
        """Feed and RPC must both answer before any loop starts."""
        self.ticker.report("Checking API health...")
        if not await self.feed.health():
            self.logger.warning("⚠️ API health check failed, waiting before retry...")
            return False
        try:
            await self.health.ensure_connection()
        except EndpointDegraded as e:
            self.logger.warning(f"⚠️ {e}, waiting before retry... [{e.code}]")
            return False
        return True

    async def initialize(self):
        """
        Loads persisted positions on the first session only; afterwards the
        in-memory state is authoritative and only in-flight guards are dropped.
        """
        self.ticker.report("Initializing bot...")
        if not self.initialized:
            await self.state.load()
            self.initialized = True
        else:
            self.state.buying.clear()
            self.state.selling.clear()
        self.logger.info("✅ Bot initialization complete")

    async def run_session(self):
        if not await self.preflight():
            return
        await self.initialize()

        tasks = [
            asyncio.create_task(self.discovery.run(), name="discovery-monitor"),
            asyncio.create_task(self.position_monitor.run(), name="position-monitor"),
            asyncio.create_task(self.health.run(), name="health-supervisor"),
        ]
        try:
            await asyncio.gather(*tasks)
        finally:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def start(self):
        self.running = True
        self.logger.info("🤖 Starting Trading Bot")
        await self.audit_log.start()
        try:
            while self.running:
                self.sessions += 1
                try:
                    await self.run_session()
                except Exception as e:
                    self.logger.error(f"❌ Error in bot run: {e} [{getattr(e, 'code', type(e).__name__)}]", exc_info=True)
                if not self.running:
                    break
                self.logger.warning(f"⚠️ Restarting in {self.restart_delay:.0f}s...")
                await self.sleep(self.restart_delay)
        finally:
            await self.shutdown()

    def stop(self):
        self.running = False

    async def shutdown(self):
        """
        Gracefully closes all HTTP sessions and flushes the trade ledger.
        """
        print("Shutting down resources...")
        await self.feed.shutdown()
        await self.ledger.shutdown()
        await self.execution.shutdown()
        await self.audit_log.stop()


def cli():
    config_path = os.environ.get("SWAPTRADER_CONFIG", "config.yaml")
    try:
        config = load_config(config_path)
    except ValueError as e:
        print(f"❌ Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    bot = TradingBot(config)
    try:
        try:
            import uvloop
            runner = uvloop.run
        except ImportError:
            runner = asyncio.run
        runner(bot.start())
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
        sys.exit()


if __name__ == "__main__":
    cli()
