# swaptrader/filters.py
import logging
from typing import Iterable, List

from .config import FilterConfig
from .logger import format_currency
from .models import FilterVerdict, Guards, Listing


def evaluate(listing: Listing, config: FilterConfig, guards: Guards = Guards()) -> FilterVerdict:
    """
    Checks a listing against every configured bound and the guard sets.
    All failing checks are reported, not only the first. Pure: the same
    listing, config and guard snapshot always give the same verdict.
    """
    reasons: List[str] = []
    pool = listing.primary

    if pool is None:
        reasons.append("No pool data")
    else:
        liquidity = pool.liquidity_usd
        if liquidity < config.min_liquidity:
            reasons.append(
                f"Liquidity too low: {format_currency(liquidity)}/{format_currency(config.min_liquidity)}"
            )
        elif liquidity > config.max_liquidity:
            reasons.append(
                f"Liquidity too high: {format_currency(liquidity)}/{format_currency(config.max_liquidity)}"
            )

        market_cap = pool.market_cap_usd
        if market_cap < config.min_market_cap:
            reasons.append(
                f"Market cap too low: {format_currency(market_cap)}/{format_currency(config.min_market_cap)}"
            )
        elif market_cap > config.max_market_cap:
            reasons.append(
                f"Market cap too high: {format_currency(market_cap)}/{format_currency(config.max_market_cap)}"
            )

        if pool.market not in config.allowed_markets:
            reasons.append(f"Market not allowed: {pool.market}")

        if pool.price <= 0:
            reasons.append("No usable price")

    score = listing.risk_score
    if score < config.min_risk_score or score > config.max_risk_score:
        reasons.append(
            f"Risk score outside range: {score} (min: {config.min_risk_score}, max: {config.max_risk_score})"
        )

    if config.require_social_data and not listing.has_social_data:
        reasons.append("No social data available")

    if listing.asset_id in guards.seen:
        reasons.append("Token already seen")

    if listing.asset_id in guards.buying:
        reasons.append("Token purchase in progress")

    return FilterVerdict(accepted=not reasons, reasons=tuple(reasons))


def filter_listings(
    listings: Iterable[Listing],
    config: FilterConfig,
    guards: Guards,
    logger: logging.Logger,
) -> List[Listing]:
    """Runs evaluate() over a batch and narrates each verdict."""
    accepted: List[Listing] = []
    for listing in listings:
        verdict = evaluate(listing, config, guards)
        if verdict.accepted:
            liquidity = listing.primary.liquidity_usd
            logger.info(f"✅ Token {listing.symbol} passed all filters ({format_currency(liquidity)} liquidity)")
            accepted.append(listing)
            continue
        logger.info(f"Token {listing.symbol} failed filters:")
        for reason in verdict.reasons:
            logger.info(f"  - {reason}")
    return accepted
