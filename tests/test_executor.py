"""
Tests for buying, selling and exit checks.
"""
import asyncio

import pytest

from swaptrader.errors import BalanceUnconfirmed, BuyError, FeedUnavailable
from swaptrader.executor import TradeExecutor, pnl_percentage, should_exit
from swaptrader.config import ExitConfig
from swaptrader.logger import AsyncAuditLogger
from swaptrader.models import ExitDecision, Lifecycle, Position
from swaptrader.position_store import PositionStore
from swaptrader.state import TradingState

from fakes import FakeExecution, FakeFeed, FakeLedger, make_listing


def _build(config, logger, feed=None, ledger=None, execution=None, audit_logger=None):
    p = config['persistence']
    state = TradingState(PositionStore(p['positions_file'], p['sold_positions_file'], logger), logger)
    executor = TradeExecutor(
        config, state,
        feed or FakeFeed(),
        execution or FakeExecution(),
        ledger or FakeLedger(),
        logger,
        audit_logger=audit_logger,
    )
    return executor, state


def _open(state, asset_id="MINT1", entry=1.0, amount=1000.0):
    position = Position(asset_id=asset_id, symbol="AAA", txid="tx-buy", entry_price=entry, amount=amount)
    asyncio.run(state.complete_buy(position))
    return position


class TestPnl:
    def test_pnl_percentage(self):
        assert pnl_percentage(1.0, 0.5) == -50.0
        assert pnl_percentage(2.0, 3.0) == 50.0

    def test_bounds_are_inclusive(self):
        exits = ExitConfig(max_negative_pnl=-40, max_positive_pnl=100)

        assert should_exit(-40.0, exits) is True
        assert should_exit(100.0, exits) is True
        assert should_exit(-39.9, exits) is False


class TestBuy:
    def test_successful_buy_opens_position(self, make_config, logger):
        ledger = FakeLedger(balances={"MINT1": 1000.0})
        executor, state = _build(make_config(), logger, ledger=ledger)
        state.try_reserve_buy("MINT1")

        position = asyncio.run(executor.buy(make_listing(price=1.0)))

        assert position.amount == 1000.0
        assert position.entry_price == 1.0
        assert position.txid == "tx-1"
        assert "MINT1" in state.seen
        assert "MINT1" not in state.buying
        assert state.store.get("MINT1") == position

    def test_unconfirmed_balance_leaves_no_position(self, make_config, logger):
        ledger = FakeLedger(balances={"MINT1": 0.0})
        executor, state = _build(make_config(), logger, ledger=ledger)
        state.try_reserve_buy("MINT1")

        with pytest.raises(BuyError) as exc_info:
            asyncio.run(executor.buy(make_listing()))

        assert isinstance(exc_info.value.__cause__, BalanceUnconfirmed)
        assert "MINT1" not in state.store
        assert state.lifecycle("MINT1") is Lifecycle.UNSEEN

    def test_failed_preparation_never_submits(self, make_config, logger):
        execution = FakeExecution(fail_prepare_for={"MINT1"})
        executor, state = _build(make_config(), logger, execution=execution)
        state.try_reserve_buy("MINT1")

        with pytest.raises(BuyError):
            asyncio.run(executor.buy(make_listing()))

        assert execution.submits == []
        assert state.buying == set()

    def test_buy_is_written_to_the_trade_log(self, make_config, logger):
        config = make_config()
        audit = AsyncAuditLogger(config['audit']['trade_log'])
        executor, state = _build(config, logger, ledger=FakeLedger({"MINT1": 5.0}), audit_logger=audit)
        state.try_reserve_buy("MINT1")

        async def scenario():
            await audit.start()
            await executor.buy(make_listing())
            await audit.stop()

        asyncio.run(scenario())

        with open(config['audit']['trade_log']) as f:
            lines = f.read().splitlines()
        assert len(lines) == 2
        assert "BUY" in lines[1]
        assert "MINT1" in lines[1]


class TestCheckExit:
    def test_stop_loss_sells_position(self, make_config, logger):
        feed = FakeFeed(quotes={"MINT1": make_listing(price=0.5)})
        ledger = FakeLedger(balances={"MINT1": 1000.0})
        execution = FakeExecution()
        executor, state = _build(
            make_config(exits={'max_negative_pnl': -40, 'max_positive_pnl': 100}),
            logger, feed=feed, ledger=ledger, execution=execution,
        )
        _open(state)

        decision = asyncio.run(executor.check_exit("MINT1"))

        assert decision is ExitDecision.SELL
        assert "MINT1" not in state.store
        assert state.selling == set()
        closed = state.store.closed[-1]
        assert closed.pnl == -500.0
        assert closed.pnl_percentage == -50.0
        assert execution.submits[0].asset_in == "MINT1"

    def test_inside_bounds_holds_without_ledger_query(self, make_config, logger):
        feed = FakeFeed(quotes={"MINT1": make_listing(price=1.1)})
        ledger = FakeLedger(balances={"MINT1": 1000.0})
        executor, state = _build(
            make_config(exits={'max_negative_pnl': -40, 'max_positive_pnl': 100}),
            logger, feed=feed, ledger=ledger,
        )
        _open(state)

        assert asyncio.run(executor.check_exit("MINT1")) is ExitDecision.HOLD
        assert ledger.balance_calls == []
        assert "MINT1" in state.store

    def test_zero_balance_drops_position_without_closing(self, make_config, logger):
        feed = FakeFeed(quotes={"MINT1": make_listing(price=3.0)})
        execution = FakeExecution()
        executor, state = _build(
            make_config(exits={'max_positive_pnl': 100}),
            logger, feed=feed, ledger=FakeLedger(balances={"MINT1": 0.0}), execution=execution,
        )
        _open(state)

        assert asyncio.run(executor.check_exit("MINT1")) is ExitDecision.DROPPED
        assert "MINT1" not in state.store
        assert state.store.closed == []
        assert execution.submits == []
        assert state.selling == set()

    def test_unknown_balance_holds(self, make_config, logger):
        feed = FakeFeed(quotes={"MINT1": make_listing(price=0.1)})
        executor, state = _build(
            make_config(exits={'max_negative_pnl': -40}),
            logger, feed=feed, ledger=FakeLedger(balances={"MINT1": None}),
        )
        _open(state)

        assert asyncio.run(executor.check_exit("MINT1")) is ExitDecision.HOLD
        assert "MINT1" in state.store
        assert state.selling == set()

    def test_failed_sell_keeps_position(self, make_config, logger):
        feed = FakeFeed(quotes={"MINT1": make_listing(price=0.5)})
        executor, state = _build(
            make_config(exits={'max_negative_pnl': -40}),
            logger, feed=feed, ledger=FakeLedger(balances={"MINT1": 1000.0}),
            execution=FakeExecution(fail_submit=True),
        )
        position = _open(state)

        assert asyncio.run(executor.check_exit("MINT1")) is ExitDecision.SELL_FAILED
        assert state.store.get("MINT1") == position
        assert state.store.closed == []
        assert state.selling == set()

    def test_sell_in_flight_is_skipped(self, make_config, logger):
        executor, state = _build(make_config(), logger)
        _open(state)
        state.try_reserve_sell("MINT1")

        assert asyncio.run(executor.check_exit("MINT1")) is ExitDecision.SKIPPED

    def test_feed_failure_holds(self, make_config, logger):
        feed = FakeFeed(quotes={"MINT1": FeedUnavailable("Timeout", timed_out=True)})
        executor, state = _build(make_config(exits={'max_negative_pnl': -1}), logger, feed=feed)
        _open(state)

        assert asyncio.run(executor.check_exit("MINT1")) is ExitDecision.HOLD
        assert "MINT1" in state.store


class TestUnusablePrice:
    def test_zero_quote_is_never_bought(self, make_config, logger):
        execution = FakeExecution()
        executor, state = _build(make_config(), logger, ledger=FakeLedger({"MINT1": 10.0}), execution=execution)
        state.try_reserve_buy("MINT1")

        with pytest.raises(BuyError):
            asyncio.run(executor.buy(make_listing(price=0.0)))

        assert execution.prepared == []
        assert execution.submits == []
        assert "MINT1" not in state.store
        assert state.lifecycle("MINT1") is Lifecycle.UNSEEN

    def test_failed_buy_is_tagged_in_the_log(self, make_config, logger, caplog):
        executor, state = _build(make_config(), logger, ledger=FakeLedger({"MINT1": 0.0}))
        state.try_reserve_buy("MINT1")

        with caplog.at_level("ERROR", logger=logger.name):
            with pytest.raises(BuyError):
                asyncio.run(executor.buy(make_listing()))

        assert "[BUY_FAILED]" in caplog.text
