# swaptrader/models.py
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple
import time


class Lifecycle(Enum):
    """
    Enum representing the lifecycle states of a traded asset.

    BUY_FAILED and SELL_FAILED are transient: they tag the failed transition
    in the executor's error log, and the asset resolves at once to UNSEEN or OPEN, which is
    what TradingState.lifecycle() reports.
    """
    UNSEEN = "UNSEEN"
    BUYING = "BUYING"
    BUY_FAILED = "BUY_FAILED"
    OPEN = "OPEN"
    SELLING = "SELLING"
    SELL_FAILED = "SELL_FAILED"
    CLOSED = "CLOSED"


class ExitDecision(Enum):
    """Outcome of one exit-condition check for an open position."""
    SKIPPED = "SKIPPED"    # sell already in flight or position gone
    HOLD = "HOLD"
    SELL = "SELL"
    SELL_FAILED = "SELL_FAILED"
    DROPPED = "DROPPED"    # balance confirmed zero, closed outside the bot


def now_ms() -> int:
    return int(time.time() * 1000)


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True, slots=True)
class PoolQuote:
    """
    One pool snapshot of a listing.
    """
    liquidity_usd: float
    market_cap_usd: float
    price: float
    market: str

    @classmethod
    def from_feed(cls, raw: Dict[str, Any]) -> "PoolQuote":
        return cls(
            liquidity_usd=_float((raw.get('liquidity') or {}).get('usd')),
            market_cap_usd=_float((raw.get('marketCap') or {}).get('usd')),
            price=_float((raw.get('price') or {}).get('quote')),
            market=str(raw.get('market', '')),
        )


@dataclass(frozen=True, slots=True)
class Listing:
    """
    Immutable snapshot of a discovered asset as returned by the feed.
    The first pool is the primary quote used for every decision.
    """
    asset_id: str
    symbol: str
    pools: Tuple[PoolQuote, ...]
    risk_score: int
    has_twitter: bool = False
    has_telegram: bool = False
    has_website: bool = False

    @property
    def primary(self) -> Optional[PoolQuote]:
        return self.pools[0] if self.pools else None

    @property
    def has_social_data(self) -> bool:
        return self.has_twitter or self.has_telegram or self.has_website

    @property
    def price(self) -> Optional[float]:
        pool = self.primary
        return pool.price if pool else None

    @classmethod
    def from_feed(cls, raw: Dict[str, Any]) -> "Listing":
        """
        Parses one entry of the feed payload:
        {'token': {'mint', 'symbol', 'twitter', ...}, 'pools': [...], 'risk': {'score'}}
        """
        token = raw.get('token') or {}
        risk = raw.get('risk') or {}
        return cls(
            asset_id=str(token.get('mint', '')),
            symbol=str(token.get('symbol', '?')),
            pools=tuple(PoolQuote.from_feed(p) for p in raw.get('pools') or []),
            risk_score=int(_float(risk.get('score'))),
            has_twitter=bool(token.get('twitter')),
            has_telegram=bool(token.get('telegram')),
            has_website=bool(token.get('website')),
        )


@dataclass(frozen=True, slots=True)
class Guards:
    """Point-in-time copy of the guard sets the filters look at."""
    seen: FrozenSet[str] = frozenset()
    buying: FrozenSet[str] = frozenset()


@dataclass(frozen=True, slots=True)
class FilterVerdict:
    accepted: bool
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Position:
    """
    Open holding created by a successful buy. Never mutated; a close
    replaces it with a ClosedPosition.
    """
    asset_id: str
    symbol: str
    txid: str
    entry_price: float
    amount: float
    open_time: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        # Keyed by asset id in the store, so the id itself is not repeated.
        return {
            'txid': self.txid,
            'symbol': self.symbol,
            'entryPrice': self.entry_price,
            'amount': self.amount,
            'openTime': self.open_time,
        }

    @classmethod
    def from_dict(cls, asset_id: str, data: Dict[str, Any]) -> "Position":
        return cls(
            asset_id=asset_id,
            symbol=str(data.get('symbol', '?')),
            txid=str(data.get('txid', '')),
            entry_price=_float(data.get('entryPrice')),
            amount=_float(data.get('amount')),
            open_time=int(_float(data.get('openTime'), now_ms())),
        )


@dataclass(frozen=True, slots=True)
class ClosedPosition:
    """
    Append-only record of a completed round trip.
    """
    position: Position
    exit_price: float
    pnl: float
    pnl_percentage: float
    close_txid: str
    close_time: int = field(default_factory=now_ms)

    @classmethod
    def from_exit(cls, position: Position, exit_price: float, close_txid: str) -> "ClosedPosition":
        pnl = (exit_price - position.entry_price) * position.amount
        cost = position.entry_price * position.amount
        pnl_pct = (pnl / cost) * 100 if cost else 0.0
        return cls(
            position=position,
            exit_price=exit_price,
            pnl=pnl,
            pnl_percentage=pnl_pct,
            close_txid=close_txid,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mint': self.position.asset_id,
            **self.position.to_dict(),
            'exitPrice': self.exit_price,
            'pnl': self.pnl,
            'pnlPercentage': self.pnl_percentage,
            'closeTime': self.close_time,
            'closeTxid': self.close_txid,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosedPosition":
        return cls(
            position=Position.from_dict(str(data.get('mint', '')), data),
            exit_price=_float(data.get('exitPrice')),
            pnl=_float(data.get('pnl')),
            pnl_percentage=_float(data.get('pnlPercentage')),
            close_txid=str(data.get('closeTxid', '')),
            close_time=int(_float(data.get('closeTime'), now_ms())),
        )


@dataclass(slots=True)
class ExecutionPlan:
    """
    Unsigned swap prepared by the execution service, passed back on submit.
    """
    asset_in: str
    asset_out: str
    amount: float
    payload: Dict[str, Any]

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
