# swaptrader/feed_client.py
import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from .errors import FeedUnavailable, ListingNotFound
from .models import Listing


def _retryable(exc: BaseException) -> bool:
    """Network trouble, timeouts, rate limits and 5xx are worth another try."""
    if not isinstance(exc, FeedUnavailable):
        return False
    return exc.timed_out or exc.status is None or exc.status == 429 or exc.status >= 500


class FeedClient:
    """
    REST client for the market-data feed (token listings + health).
    Each request is retried with a linearly growing delay before the
    error surfaces as FeedUnavailable.
    """
    def __init__(self, config: dict, logger: logging.Logger, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = config['feed']
        self.logger = logger
        self.base_url = self.cfg['base_url'].rstrip('/')
        self.retries = int(self.cfg.get('retries', 3))
        self.retry_delay = float(self.cfg.get('retry_delay_seconds', 2.0))
        self._session = session
        self._owns_session = session is None

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={'x-api-key': self.cfg.get('api_key', '')},
                timeout=aiohttp.ClientTimeout(total=float(self.cfg['timeout_seconds'])),
            )

    async def shutdown(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _request(self, path: str, parse_json: bool = True) -> Any:
        """
        One raw GET. Translates transport errors into the feed's error types.
        """
        if self._session is None:
            await self.start()
        url = f"{self.base_url}{path}"
        try:
            async with self._session.get(url) as resp:
                if resp.status == 404:
                    raise ListingNotFound(f"Not found: {path}")
                if resp.status >= 400:
                    body = await resp.text()
                    raise FeedUnavailable(f"HTTP {resp.status} from {path}: {body[:200]}", status=resp.status)
                if not parse_json:
                    return await resp.text()
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise FeedUnavailable(f"Timeout fetching {path}", timed_out=True) from e
        except aiohttp.ClientError as e:
            raise FeedUnavailable(f"Network error fetching {path}: {e}") from e
        except ValueError as e:
            raise FeedUnavailable(f"Malformed JSON from {path}: {e}") from e

    async def _get(self, path: str) -> Any:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_incrementing(start=self.retry_delay, increment=self.retry_delay),
            retry=retry_if_exception(_retryable),
            reraise=True,
        ):
            with attempt:
                return await self._request(path)

    async def latest_listings(self) -> List[Listing]:
        try:
            data = await self._get("/tokens/latest")
        except ListingNotFound as e:
            # A missing list endpoint is an outage, not an unknown token.
            raise FeedUnavailable(f"Listing endpoint not found: {e}", status=404) from e
        if isinstance(data, dict):
            data = data.get('data') or data.get('tokens') or []
        if not isinstance(data, list):
            raise FeedUnavailable(f"Unexpected listings payload: {type(data).__name__}")
        listings: List[Listing] = []
        for raw in data:
            if not isinstance(raw, dict):
                continue
            try:
                listing = Listing.from_feed(raw)
            except (AttributeError, TypeError, ValueError) as e:
                self.logger.warning(f"⚠️ Skipping malformed listing: {e}")
                continue
            if listing.asset_id:
                listings.append(listing)
        return listings

    async def listing(self, asset_id: str) -> Listing:
        data: Dict[str, Any] = await self._get(f"/tokens/{asset_id}")
        try:
            listing = Listing.from_feed(data or {})
        except (AttributeError, TypeError, ValueError) as e:
            raise FeedUnavailable(f"Malformed listing for {asset_id}: {e}", asset=asset_id) from e
        if not listing.asset_id:
            # Single-token responses may omit the mint; we asked for it by id.
            listing = replace(listing, asset_id=asset_id)
        return listing

    async def health(self) -> bool:
        """Single probe of /health, never raises."""
        try:
            await self._request("/health", parse_json=False)
        except (FeedUnavailable, ListingNotFound) as e:
            self.logger.error(f"❌ API Health Check Failed: {e}")
            return False
        self.logger.info("✅ API Health Check: OK")
        return True
