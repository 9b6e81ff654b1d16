"""
Shared fixtures: a validated config rooted in tmp_path and a quiet logger.
"""
import logging

import pytest

from swaptrader.config import DEFAULTS, _merge, validate_config


@pytest.fixture
def logger():
    log = logging.getLogger("swaptrader-tests")
    log.setLevel(logging.DEBUG)
    return log


@pytest.fixture
def make_config(tmp_path):
    """
    Factory for configs whose files live in tmp_path and whose retry
    delays are zero. Keyword arguments are merged per section.
    """
    def factory(**sections):
        base = _merge(DEFAULTS, {
            'feed': {'retry_delay_seconds': 0},
            'execution': {'wallet_address': "WALLET"},
            'ledger': {
                'rpc_url': "http://rpc-a",
                'fallback_rpcs': ["http://rpc-b", "http://rpc-c"],
                'attempt_delay_seconds': 0,
            },
            'persistence': {
                'positions_file': str(tmp_path / "positions.json"),
                'sold_positions_file': str(tmp_path / "sold_positions.json"),
            },
            'audit': {'trade_log': str(tmp_path / "logs" / "trades.csv")},
            'system': {'log_file': ""},
        })
        return validate_config(_merge(base, sections))
    return factory
