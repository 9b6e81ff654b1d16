"""
Tests for the discovery, position and health loops.
"""
import asyncio

import pytest

from swaptrader.circuit_breaker import CircuitBreaker
from swaptrader.endpoint_pool import EndpointPool
from swaptrader.errors import EndpointDegraded, ExecutionFailed, FeedUnavailable, ListingNotFound
from swaptrader.feed_client import FeedClient
from swaptrader.executor import TradeExecutor
from swaptrader.models import ExitDecision, Position
from swaptrader.monitors import DiscoveryMonitor, HealthSupervisor, PositionMonitor
from swaptrader.position_store import PositionStore
from swaptrader.state import TradingState
from swaptrader.status import StatusTicker

from fakes import FakeClock, FakeExecution, FakeFeed, FakeLedger, RecordingSleep, degraded, make_listing


class ScriptedFeed(FeedClient):
    """FeedClient with the HTTP layer replaced by canned responses."""
    def __init__(self, config, logger, responses):
        super().__init__(config, logger)
        self.responses = list(responses)

    async def _request(self, path, parse_json=True):
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class Harness:
    def __init__(self, config, logger, feed=None, ledger=None, execution=None, breaker=None):
        p = config['persistence']
        self.sleep = RecordingSleep()
        self.feed = feed or FakeFeed()
        self.ledger = ledger or FakeLedger()
        self.execution = execution or FakeExecution()
        self.breaker = breaker or CircuitBreaker(clock=FakeClock(), logger=logger)
        self.ticker = StatusTicker(logger)
        self.state = TradingState(PositionStore(p['positions_file'], p['sold_positions_file'], logger), logger)
        self.executor = TradeExecutor(config, self.state, self.feed, self.execution, self.ledger, logger, self.ticker)
        self.discovery = DiscoveryMonitor(
            config, self.state, self.feed, self.breaker, self.executor, logger, self.ticker, sleep=self.sleep,
        )
        self.positions = PositionMonitor(config, self.state, self.executor, logger, self.ticker, sleep=self.sleep)


class TestDiscoveryMonitor:
    def test_one_failed_buy_does_not_stop_the_others(self, make_config, logger):
        feed = FakeFeed(listings=[make_listing("BAD", "BAD"), make_listing("GOOD", "GOOD")])
        h = Harness(
            make_config(), logger, feed=feed,
            ledger=FakeLedger(balances={"BAD": 1.0, "GOOD": 250.0}),
            execution=FakeExecution(fail_prepare_for={"BAD"}),
        )

        dispatched = asyncio.run(h.discovery.run_once())

        assert dispatched == 2
        assert h.state.store.ids() == ["GOOD"]
        assert h.state.buying == set()
        assert "BAD" not in h.state.seen
        assert h.discovery.scan_count == 1

    def test_open_and_seen_assets_are_not_bought_again(self, make_config, logger):
        feed = FakeFeed(listings=[make_listing("MINT1")])
        h = Harness(make_config(), logger, feed=feed, ledger=FakeLedger(balances={"MINT1": 1.0}))
        asyncio.run(h.state.complete_buy(
            Position(asset_id="MINT1", symbol="AAA", txid="tx", entry_price=1.0, amount=1.0)
        ))

        assert asyncio.run(h.discovery.run_once()) == 0
        assert h.execution.submits == []

    def test_open_circuit_pauses_the_scan(self, make_config, logger):
        breaker = CircuitBreaker(threshold=1, clock=FakeClock(), logger=logger)
        breaker.record_failure()
        h = Harness(make_config(), logger, feed=FakeFeed(listings=[make_listing()]), breaker=breaker)

        assert asyncio.run(h.discovery.fetch_listings()) == []
        assert h.sleep.calls == [300.0]
        assert h.feed.listing_calls == 0

    def test_timeout_pauses_and_counts_as_failure(self, make_config, logger):
        feed = FakeFeed(listings=FeedUnavailable("Timeout", timed_out=True))
        h = Harness(make_config(), logger, feed=feed)

        assert asyncio.run(h.discovery.fetch_listings()) == []
        assert h.sleep.calls == [30.0]
        assert h.breaker.failures == 1

    def test_other_feed_errors_do_not_pause(self, make_config, logger):
        feed = FakeFeed(listings=FeedUnavailable("HTTP 500", status=500))
        h = Harness(make_config(), logger, feed=feed)

        assert asyncio.run(h.discovery.fetch_listings()) == []
        assert h.sleep.calls == []


class TestPositionMonitor:
    def test_each_position_is_checked_independently(self, make_config, logger):
        feed = FakeFeed(quotes={
            "DOWN": make_listing("DOWN", price=0.5),
            "FLAT": make_listing("FLAT", price=1.0),
            "GONE": FeedUnavailable("HTTP 502", status=502),
        })
        h = Harness(
            make_config(exits={'max_negative_pnl': -40, 'max_positive_pnl': 100}),
            logger, feed=feed, ledger=FakeLedger(balances={"DOWN": 10.0}),
        )
        for asset_id in ("DOWN", "FLAT", "GONE"):
            asyncio.run(h.state.complete_buy(
                Position(asset_id=asset_id, symbol=asset_id, txid="tx", entry_price=1.0, amount=10.0)
            ))

        decisions = asyncio.run(h.positions.run_once())

        assert decisions == {
            "DOWN": ExitDecision.SELL,
            "FLAT": ExitDecision.HOLD,
            "GONE": ExitDecision.HOLD,
        }
        assert sorted(h.state.store.ids()) == ["FLAT", "GONE"]

    def test_no_positions(self, make_config, logger):
        h = Harness(make_config(), logger)

        assert asyncio.run(h.positions.run_once()) == {}


class TestHealthSupervisor:
    def _supervisor(self, config, logger, ledger):
        pool = EndpointPool(["http://rpc-a", "http://rpc-b", "http://rpc-c"], logger)
        sleep = RecordingSleep()
        return HealthSupervisor(config, pool, ledger, logger, StatusTicker(logger), sleep=sleep), pool, sleep

    def test_failed_endpoint_is_rotated_away(self, make_config, logger):
        ledger = FakeLedger(block_results=degraded(1) + [50.0])
        health, pool, _ = self._supervisor(make_config(), logger, ledger)

        assert asyncio.run(health.check_connection()) is True
        assert pool.current() == "http://rpc-b"

    def test_slow_endpoint_is_rotated_away(self, make_config, logger):
        ledger = FakeLedger(block_results=[20000.0, 120.0])
        health, pool, _ = self._supervisor(make_config(), logger, ledger)

        assert asyncio.run(health.check_connection()) is True
        assert pool.current() == "http://rpc-b"

    def test_gives_up_after_two_full_cycles(self, make_config, logger):
        ledger = FakeLedger(block_results=degraded(6) + [10.0])
        health, pool, sleep = self._supervisor(make_config(), logger, ledger)

        assert asyncio.run(health.check_connection()) is False
        assert len(ledger.block_results) == 1
        assert len(sleep.calls) == 5
        assert pool.current() == "http://rpc-a"

    def test_exhaustion_escapes_the_loop(self, make_config, logger):
        ledger = FakeLedger(block_results=degraded(6))
        health, _, sleep = self._supervisor(make_config(), logger, ledger)

        with pytest.raises(EndpointDegraded):
            asyncio.run(health.run())
        assert health.checks_count == 1
        assert 30.0 not in sleep.calls

    def test_ensure_connection_raises_on_exhaustion(self, make_config, logger):
        ledger = FakeLedger(block_results=degraded(6))
        health, _, _ = self._supervisor(make_config(), logger, ledger)

        with pytest.raises(EndpointDegraded):
            asyncio.run(health.ensure_connection())


class TestDiscoveryFeedErrors:
    def test_missing_listing_endpoint_yields_empty_scan(self, make_config, logger):
        config = make_config()
        feed = ScriptedFeed(config, logger, [ListingNotFound("Not found: /tokens/latest")])
        h = Harness(config, logger, feed=feed)

        assert asyncio.run(h.discovery.run_once()) == 0
        assert h.breaker.failures == 1

    def test_malformed_entries_are_skipped(self, make_config, logger):
        config = make_config()
        payload = [
            {'token': {'mint': "BROKEN"}, 'pools': [], 'risk': 3},
            {'token': {'mint': "MINT1", 'symbol': "AAA"}, 'pools': [{
                'liquidity': {'usd': 5000}, 'marketCap': {'usd': 9000},
                'price': {'quote': 0.5}, 'market': "raydium",
            }], 'risk': {'score': 1}},
        ]
        feed = ScriptedFeed(config, logger, [payload])
        h = Harness(config, logger, feed=feed)

        listings = asyncio.run(h.discovery.fetch_listings())

        assert [l.asset_id for l in listings] == ["MINT1"]

    def test_any_trading_error_from_the_feed_is_contained(self, make_config, logger):
        feed = FakeFeed(listings=ExecutionFailed("unexpected"))
        h = Harness(make_config(), logger, feed=feed)

        assert asyncio.run(h.discovery.fetch_listings()) == []
        assert h.sleep.calls == []
