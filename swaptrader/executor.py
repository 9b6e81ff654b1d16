# swaptrader/executor.py
import logging
import time
from typing import Optional

from .config import ExitConfig, SOL_ADDRESS
from .errors import (
    BalanceUnconfirmed,
    BuyError,
    ExecutionFailed,
    FeedUnavailable,
    ListingNotFound,
    SellError,
)
from .execution import SwapExecutionService, build_swap_options
from .feed_client import FeedClient
from .ledger_client import LedgerClient
from .logger import AsyncAuditLogger, format_currency, format_number
from .models import ClosedPosition, ExitDecision, Lifecycle, Listing, Position
from .state import TradingState
from .status import StatusTicker


def pnl_percentage(entry_price: float, current_price: float) -> float:
    return ((current_price - entry_price) / entry_price) * 100


def should_exit(pnl_pct: float, exits: ExitConfig) -> bool:
    return pnl_pct <= exits.max_negative_pnl or pnl_pct >= exits.max_positive_pnl


class TradeExecutor:
    """
    Buys and sells through the swap service and keeps TradingState in step.

    The guard sets are reserved by the callers (the monitors) and released
    here, on success and on failure alike. A failed buy leaves no Position,
    a failed sell leaves the Position untouched for the next cycle.
    """
    def __init__(
        self,
        config: dict,
        state: TradingState,
        feed: FeedClient,
        execution: SwapExecutionService,
        ledger: LedgerClient,
        logger: logging.Logger,
        ticker: Optional[StatusTicker] = None,
        audit_logger: Optional[AsyncAuditLogger] = None,
    ):
        self.state = state
        self.feed = feed
        self.execution = execution
        self.ledger = ledger
        self.logger = logger
        self.ticker = ticker
        self.audit_logger = audit_logger

        trading = config['trading']
        self.amount = float(trading['amount'])
        self.slippage = int(trading['slippage'])
        self.priority_fee = float(trading['priority_fee'])
        self.wallet = config['execution']['wallet_address']
        self.swap_options = build_swap_options(
            use_jito=bool(config['execution']['use_jito']),
            jito_tip=float(config['execution']['jito_tip']),
        )
        self.exits = ExitConfig.from_config(config)

    def _status(self, message: str):
        if self.ticker:
            self.ticker.report(message)

    async def _audit(self, action: str, position: Position, price: float, txid: str,
                     pnl: Optional[float] = None, pnl_pct: Optional[float] = None):
        if self.audit_logger is None:
            return
        await self.audit_logger.log_trade([
            time.strftime('%Y-%m-%d %H:%M:%S'),
            action,
            position.symbol,
            position.asset_id,
            f"{position.amount:.6f}",
            f"{price:.10f}",
            txid,
            "" if pnl is None else f"{pnl:.6f}",
            "" if pnl_pct is None else f"{pnl_pct:.2f}",
        ])

    async def _swap(self, asset_in: str, asset_out: str, amount: float, symbol: str) -> str:
        self._status(f"Getting swap instructions for {symbol}...")
        plan = await self.execution.prepare(
            asset_in, asset_out, amount, self.slippage, self.wallet, self.priority_fee
        )
        self._status(f"Executing swap for {symbol}...")
        return await self.execution.submit(plan, self.swap_options)

    # --- buy path ---

    async def buy(self, listing: Listing) -> Position:
        asset_id = listing.asset_id
        self.logger.info(f"BUYING [{self.wallet}] [{listing.symbol}] [{asset_id}]")
        try:
            if listing.price is None or listing.price <= 0:
                raise ExecutionFailed("Listing has no usable price", asset=asset_id)
            txid = await self._swap(SOL_ADDRESS, asset_id, self.amount, listing.symbol)
            self.logger.info(f"✅ BOUGHT {listing.symbol} [{txid}]")

            self._status(f"Confirming {listing.symbol} purchase...")
            held = await self.ledger.balance_of(self.wallet, asset_id)
            if not held:
                raise BalanceUnconfirmed(
                    f"Swap failed {asset_id}: no balance after buy (tx {txid})", asset=asset_id
                )

            position = Position(
                asset_id=asset_id,
                symbol=listing.symbol,
                txid=txid,
                entry_price=listing.price,
                amount=held,
            )
            await self.state.complete_buy(position)
        except Exception as e:
            self.state.release_buy(asset_id)
            code = getattr(e, 'code', type(e).__name__)
            self.logger.error(f"❌ [{Lifecycle.BUY_FAILED.value}] Error performing buy of {listing.symbol} [{asset_id}]: {e} [{code}]")
            raise BuyError(f"Buy of {listing.symbol} failed: {e}", asset=asset_id) from e

        self.logger.info(f"✅ Successfully bought {listing.symbol} (Amount: {format_number(position.amount)})")
        await self._audit("BUY", position, position.entry_price, position.txid)
        return position

    # --- sell path ---

    async def sell(self, position: Position, listing: Optional[Listing] = None) -> ClosedPosition:
        asset_id = position.asset_id
        self.logger.info(f"SELLING [{self.wallet}] [{position.symbol}] [{asset_id}]")
        try:
            if listing is None:
                listing = await self.feed.listing(asset_id)
            exit_price = listing.price
            if exit_price is None:
                raise ExecutionFailed("Listing has no quoted price", asset=asset_id)

            txid = await self._swap(asset_id, SOL_ADDRESS, position.amount, position.symbol)
            self.logger.info(f"✅ SOLD {position.symbol} [{txid}]")

            closed = ClosedPosition.from_exit(position, exit_price, txid)
            await self.state.store.append_closed(closed)
            await self.state.complete_sell(asset_id)
        except Exception as e:
            self.state.release_sell(asset_id)
            code = getattr(e, 'code', type(e).__name__)
            self.logger.error(f"❌ [{Lifecycle.SELL_FAILED.value}] Error performing sell of {position.symbol} [{asset_id}]: {e} [{code}]")
            raise SellError(f"Sell of {position.symbol} failed: {e}", asset=asset_id) from e

        log = self.logger.info if closed.pnl >= 0 else self.logger.warning
        log(
            f"Closed position for {position.symbol}. "
            f"PnL: {format_currency(closed.pnl)} ({closed.pnl_percentage:.2f}%)"
        )
        await self._audit("SELL", position, closed.exit_price, closed.close_txid,
                          closed.pnl, closed.pnl_percentage)
        return closed

    # --- exit conditions ---

    async def check_exit(self, asset_id: str) -> ExitDecision:
        """
        One exit check for an open position: re-quote, compare PnL with the
        configured bounds, confirm the balance, then sell or drop.
        """
        if asset_id in self.state.selling:
            return ExitDecision.SKIPPED
        position = self.state.store.get(asset_id)
        if position is None:
            return ExitDecision.SKIPPED

        try:
            listing = await self.feed.listing(asset_id)
        except (ListingNotFound, FeedUnavailable) as e:
            self.logger.error(f"❌ Failed to fetch data for token {asset_id}: {e} [{e.code}]")
            return ExitDecision.HOLD

        current = listing.price
        if current is None or position.entry_price <= 0:
            self.logger.warning(f"⚠️ No usable price for {position.symbol}, holding")
            return ExitDecision.HOLD

        pnl_pct = pnl_percentage(position.entry_price, current)
        log = self.logger.info if pnl_pct >= 0 else self.logger.warning
        log(f"PnL for position [{position.symbol}] [{pnl_pct:.2f}%]")

        if not should_exit(pnl_pct, self.exits):
            return ExitDecision.HOLD

        if not self.state.try_reserve_sell(asset_id):
            return ExitDecision.SKIPPED

        held = await self.ledger.balance_of(self.wallet, asset_id)
        if held is None:
            self.state.release_sell(asset_id)
            self.logger.warning(f"⚠️ Balance of {position.symbol} unavailable, retrying next cycle")
            return ExitDecision.HOLD

        if held <= 0:
            self.state.release_sell(asset_id)
            await self.state.store.remove(asset_id)
            self.logger.warning(f"⚠️ No balance found for {position.symbol}, removing from positions")
            return ExitDecision.DROPPED

        try:
            await self.sell(position, listing)
        except SellError:
            return ExitDecision.SELL_FAILED
        return ExitDecision.SELL
