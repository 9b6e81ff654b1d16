# swaptrader/errors.py
from typing import Optional


class TradingError(Exception):
    """
    Base class. `code` is a short machine-readable tag used in log context,
    `asset` the asset id the failure belongs to (if any).
    """
    code = "TRADING_ERROR"

    def __init__(self, message: str, asset: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.asset = asset
        if code:
            self.code = code


class FeedUnavailable(TradingError):
    code = "FEED_UNAVAILABLE"

    def __init__(self, message: str, timed_out: bool = False, status: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timed_out = timed_out
        self.status = status


class ListingNotFound(TradingError):
    code = "LISTING_NOT_FOUND"


class CircuitOpenError(TradingError):
    code = "CIRCUIT_OPEN"


class EndpointDegraded(TradingError):
    code = "ENDPOINT_DEGRADED"

    def __init__(self, message: str, endpoint: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.endpoint = endpoint


class ExecutionFailed(TradingError):
    code = "EXECUTION_FAILED"


class BalanceUnconfirmed(TradingError):
    code = "BALANCE_UNCONFIRMED"


class PersistenceFailed(TradingError):
    code = "PERSISTENCE_FAILED"


class BuyError(TradingError):
    code = "BUY_FAILED"


class SellError(TradingError):
    code = "SELL_FAILED"
