# swaptrader/config.py
import copy
import math
import os
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Optional

import yaml
from dotenv import load_dotenv

SOL_ADDRESS = "So11111111111111111111111111111111111111112"

DEFAULT_MARKETS = ['raydium', 'orca', 'pumpfun', 'moonshot', 'raydium-cpmm']

DEFAULT_FALLBACK_RPCS = [
    "https://api.mainnet-beta.solana.com",
    "https://solana-api.projectserum.com",
    "https://rpc.ankr.com/solana",
]

DEFAULTS: Dict[str, Any] = {
    'feed': {
        'base_url': "https://data.solanatracker.io/",
        'api_key': "",
        'timeout_seconds': 30,
        'retries': 3,
        'retry_delay_seconds': 2.0,
    },
    'execution': {
        'swap_url': "https://swap-v2.solanatracker.io",
        'submit_url': "http://127.0.0.1:8787/submit",
        'timeout_seconds': 60,
        'wallet_address': "",
        'use_jito': False,
        'jito_tip': 0.0001,
    },
    'ledger': {
        'rpc_url': "",
        'fallback_rpcs': list(DEFAULT_FALLBACK_RPCS),
        'timeout_seconds': 30,
        'max_latency_ms': 10000,
        'health_interval_seconds': 30,
        'attempt_delay_seconds': 2.0,
    },
    'trading': {
        'amount': 0.01,
        'slippage': 10,
        'priority_fee': 0.0005,
        'scan_delay_seconds': 10,
        'monitor_interval_seconds': 5,
    },
    'filters': {
        'min_liquidity': 0.0,
        'max_liquidity': math.inf,
        'min_market_cap': 0.0,
        'max_market_cap': math.inf,
        'min_risk_score': 0,
        'max_risk_score': 10,
        'require_social_data': False,
        'markets': list(DEFAULT_MARKETS),
    },
    'exits': {
        'max_negative_pnl': -math.inf,
        'max_positive_pnl': math.inf,
    },
    'circuit_breaker': {
        'threshold': 5,
        'cooldown_seconds': 300,
        'open_pause_seconds': 300,
        'timeout_pause_seconds': 30,
    },
    'persistence': {
        'positions_file': "positions.json",
        'sold_positions_file': "sold_positions.json",
    },
    'audit': {
        'trade_log': "logs/trades.csv",
    },
    'system': {
        'log_level': "INFO",
        'log_file': "trading-bot.log",
        'restart_delay_seconds': 60,
        'status_interval_seconds': 2.0,
    },
}


def _flag(value: str) -> bool:
    return value.strip().lower() == "true"


def _csv(value: str) -> list:
    return [v.strip() for v in value.split(",") if v.strip()]


def _ms(value: str) -> float:
    return float(value) / 1000.0


# env name -> (section, key, parser)
ENV_OVERRIDES: Dict[str, tuple] = {
    'API_KEY': ('feed', 'api_key', str),
    'WALLET_ADDRESS': ('execution', 'wallet_address', str),
    'SWAP_API_URL': ('execution', 'swap_url', str),
    'SUBMIT_URL': ('execution', 'submit_url', str),
    'JITO': ('execution', 'use_jito', _flag),
    'RPC_URL': ('ledger', 'rpc_url', str),
    'FALLBACK_RPCS': ('ledger', 'fallback_rpcs', _csv),
    'AMOUNT': ('trading', 'amount', float),
    'DELAY': ('trading', 'scan_delay_seconds', _ms),
    'MONITOR_INTERVAL': ('trading', 'monitor_interval_seconds', _ms),
    'SLIPPAGE': ('trading', 'slippage', int),
    'PRIORITY_FEE': ('trading', 'priority_fee', float),
    'MIN_LIQUIDITY': ('filters', 'min_liquidity', float),
    'MAX_LIQUIDITY': ('filters', 'max_liquidity', float),
    'MIN_MARKET_CAP': ('filters', 'min_market_cap', float),
    'MAX_MARKET_CAP': ('filters', 'max_market_cap', float),
    'MIN_RISK_SCORE': ('filters', 'min_risk_score', int),
    'MAX_RISK_SCORE': ('filters', 'max_risk_score', int),
    'REQUIRE_SOCIAL_DATA': ('filters', 'require_social_data', _flag),
    'MARKETS': ('filters', 'markets', _csv),
    'MAX_NEGATIVE_PNL': ('exits', 'max_negative_pnl', float),
    'MAX_POSITIVE_PNL': ('exits', 'max_positive_pnl', float),
    'LOG_LEVEL': ('system', 'log_level', str),
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        elif value is not None:
            merged[key] = value
    return merged


def apply_env(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    for name, (section, key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw.strip() == "":
            continue
        try:
            config[section][key] = parse(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from e
    return config


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    trading = config['trading']
    if float(trading['amount']) <= 0:
        raise ValueError("trading.amount must be > 0")
    if float(trading['scan_delay_seconds']) <= 0:
        raise ValueError("trading.scan_delay_seconds must be > 0")
    if float(trading['monitor_interval_seconds']) <= 0:
        raise ValueError("trading.monitor_interval_seconds must be > 0")
    if int(trading['slippage']) < 0:
        raise ValueError("trading.slippage must be >= 0")

    f = config['filters']
    if float(f['min_liquidity']) > float(f['max_liquidity']):
        raise ValueError("filters.min_liquidity must be <= max_liquidity")
    if float(f['min_market_cap']) > float(f['max_market_cap']):
        raise ValueError("filters.min_market_cap must be <= max_market_cap")
    if int(f['min_risk_score']) > int(f['max_risk_score']):
        raise ValueError("filters.min_risk_score must be <= max_risk_score")

    exits = config['exits']
    if float(exits['max_negative_pnl']) > float(exits['max_positive_pnl']):
        raise ValueError("exits.max_negative_pnl must be <= max_positive_pnl")

    if not endpoint_list(config):
        raise ValueError("ledger.rpc_url or ledger.fallback_rpcs must name at least one endpoint")
    return config


def endpoint_list(config: Dict[str, Any]) -> list:
    """The configured RPC_URL is the active endpoint at startup, fallbacks follow."""
    ledger = config['ledger']
    endpoints = [ledger.get('rpc_url') or ""]
    endpoints.extend(ledger.get('fallback_rpcs') or [])
    return [e for e in endpoints if e]


def load_config(
    path: Optional[str] = "config.yaml",
    environ: Optional[Dict[str, str]] = None,
    dotenv: bool = True,
) -> Dict[str, Any]:
    """
    Defaults <- config.yaml <- environment (.env is loaded into os.environ first).
    """
    if dotenv and environ is None:
        load_dotenv()

    file_conf: Dict[str, Any] = {}
    if path and os.path.exists(path):
        with open(path, "r") as f:
            file_conf = yaml.safe_load(f) or {}

    config = _merge(DEFAULTS, file_conf)
    apply_env(config, environ)
    return validate_config(config)


@dataclass(frozen=True, slots=True)
class FilterConfig:
    min_liquidity: float = 0.0
    max_liquidity: float = math.inf
    min_market_cap: float = 0.0
    max_market_cap: float = math.inf
    min_risk_score: int = 0
    max_risk_score: int = 10
    require_social_data: bool = False
    allowed_markets: FrozenSet[str] = frozenset(DEFAULT_MARKETS)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "FilterConfig":
        f = config['filters']
        return cls(
            min_liquidity=float(f['min_liquidity']),
            max_liquidity=float(f['max_liquidity']),
            min_market_cap=float(f['min_market_cap']),
            max_market_cap=float(f['max_market_cap']),
            min_risk_score=int(f['min_risk_score']),
            max_risk_score=int(f['max_risk_score']),
            require_social_data=bool(f['require_social_data']),
            allowed_markets=frozenset(f['markets']),
        )


@dataclass(frozen=True, slots=True)
class ExitConfig:
    max_negative_pnl: float = -math.inf
    max_positive_pnl: float = math.inf

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ExitConfig":
        e = config['exits']
        return cls(
            max_negative_pnl=float(e['max_negative_pnl']),
            max_positive_pnl=float(e['max_positive_pnl']),
        )
