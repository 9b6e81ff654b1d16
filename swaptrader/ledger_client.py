# swaptrader/ledger_client.py
import asyncio
import itertools
import logging
import time
from typing import Any, Optional, Tuple

import aiohttp
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from .endpoint_pool import EndpointPool
from .errors import EndpointDegraded


class LedgerClient:
    """
    Chain queries over JSON-RPC. Every call goes to the pool's current
    endpoint, so a rotation takes effect on the very next request.
    """
    def __init__(
        self,
        config: dict,
        pool: EndpointPool,
        logger: logging.Logger,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.cfg = config['ledger']
        self.pool = pool
        self.logger = logger
        self.retries = 3
        self._session = session
        self._owns_session = session is None
        self._ids = itertools.count(1)

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=float(self.cfg['timeout_seconds'])),
            )

    async def shutdown(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _rpc(self, method: str, params: list) -> Any:
        if self._session is None:
            await self.start()
        endpoint = self.pool.current()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with self._session.post(endpoint, json=payload) as resp:
                if resp.status >= 400:
                    raise EndpointDegraded(f"{method}: HTTP {resp.status}", endpoint=endpoint)
                body = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise EndpointDegraded(f"{method}: timeout", endpoint=endpoint) from e
        except aiohttp.ClientError as e:
            raise EndpointDegraded(f"{method}: {e}", endpoint=endpoint) from e
        except ValueError as e:
            raise EndpointDegraded(f"{method}: malformed JSON", endpoint=endpoint) from e

        if not isinstance(body, dict):
            raise EndpointDegraded(f"{method}: malformed response", endpoint=endpoint)
        if body.get('error'):
            raise EndpointDegraded(f"{method}: {body['error']}", endpoint=endpoint)
        return body.get('result')

    async def balance_of(self, owner: str, mint: str) -> Optional[float]:
        """
        Token balance of `owner` for `mint` in UI units.
        0.0 when the owner holds no account for the mint, None when the
        ledger could not be queried.
        """
        params = [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}]
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.retries),
                wait=wait_exponential(multiplier=0.5, max=4),
                retry=retry_if_exception_type(EndpointDegraded),
            ):
                with attempt:
                    result = await self._rpc("getTokenAccountsByOwner", params)
        except RetryError as e:
            self.logger.error(f"❌ Balance query failed for {mint}: {e.last_attempt.exception()}")
            return None
        return sum_token_accounts(result)

    async def latest_block_reference(self) -> Tuple[str, float]:
        """
        Latest blockhash and the round-trip time in ms. Raises EndpointDegraded.
        """
        started = time.perf_counter()
        result = await self._rpc("getLatestBlockhash", [{"commitment": "confirmed"}])
        latency_ms = (time.perf_counter() - started) * 1000
        blockhash = ((result or {}).get('value') or {}).get('blockhash')
        if not blockhash:
            raise EndpointDegraded("getLatestBlockhash returned no blockhash", endpoint=self.pool.current())
        return blockhash, latency_ms


def sum_token_accounts(result: Any) -> float:
    total = 0.0
    for acc in (result or {}).get('value') or []:
        info = (((acc.get('account') or {}).get('data') or {}).get('parsed') or {}).get('info') or {}
        ui_amount = (info.get('tokenAmount') or {}).get('uiAmount')
        if ui_amount:
            total += float(ui_amount)
    return total
