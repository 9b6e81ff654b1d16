# swaptrader/execution.py
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import ExecutionFailed
from .models import ExecutionPlan


class _TransientExecutionError(ExecutionFailed):
    """Transport-level failure on an idempotent call; safe to retry."""


def build_swap_options(use_jito: bool = False, jito_tip: float = 0.0001) -> Dict[str, Any]:
    """
    Submission options handed to the execution service with every swap.
    """
    return {
        'sendOptions': {'skipPreflight': True},
        'confirmationRetries': 30,
        'confirmationRetryTimeout': 1000,
        'lastValidBlockHeightBuffer': 150,
        'resendInterval': 1000,
        'confirmationCheckInterval': 1000,
        'commitment': "processed",
        'jito': {'enabled': True, 'tip': jito_tip} if use_jito else None,
    }


class SwapExecutionService:
    """
    Client of the external swap service.

    prepare() asks the swap API for an unsigned route/transaction and is
    retried on transport errors. submit() hands the plan to the signing
    relay which signs, sends and confirms it; it is NOT retried, a second
    submit could execute the swap twice.
    """
    def __init__(self, config: dict, logger: logging.Logger, session: Optional[aiohttp.ClientSession] = None):
        self.cfg = config['execution']
        self.logger = logger
        self.swap_url = self.cfg['swap_url'].rstrip('/')
        self.submit_url = self.cfg['submit_url']
        self.prepare_attempts = 3
        self._session = session
        self._owns_session = session is None

    async def start(self):
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=float(self.cfg['timeout_seconds'])),
            )

    async def shutdown(self):
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def prepare(
        self,
        asset_in: str,
        asset_out: str,
        amount: float,
        slippage: int,
        signer: str,
        priority_fee: float,
    ) -> ExecutionPlan:
        params = {
            'from': asset_in,
            'to': asset_out,
            'fromAmount': str(amount),
            'slippage': str(slippage),
            'payer': signer,
            'priorityFee': str(priority_fee),
        }
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.prepare_attempts),
            wait=wait_exponential(multiplier=0.5, max=4),
            retry=retry_if_exception_type(_TransientExecutionError),
            reraise=True,
        ):
            with attempt:
                payload = await self._call('GET', f"{self.swap_url}/swap", params=params)
        if not isinstance(payload, dict) or payload.get('error'):
            raise ExecutionFailed(f"Swap preparation rejected: {payload}", asset=asset_out)
        return ExecutionPlan(asset_in=asset_in, asset_out=asset_out, amount=amount, payload=payload)

    async def submit(self, plan: ExecutionPlan, options: Dict[str, Any]) -> str:
        body = {'plan': plan.as_dict(), 'options': options}
        try:
            result = await self._call('POST', self.submit_url, json=body)
        except _TransientExecutionError as e:
            raise ExecutionFailed(f"Swap submission failed: {e}", asset=plan.asset_out) from e
        txid = result.get('txid') if isinstance(result, dict) else None
        if not txid:
            error = result.get('error') if isinstance(result, dict) else result
            raise ExecutionFailed(f"Swap submission returned no txid: {error}", asset=plan.asset_out)
        return str(txid)

    async def _call(self, method: str, url: str, **kwargs) -> Any:
        if self._session is None:
            await self.start()
        try:
            async with self._session.request(method, url, **kwargs) as resp:
                text = await resp.text()
                try:
                    data = json.loads(text) if text else None
                except ValueError:
                    data = text
                if resp.status >= 500:
                    raise _TransientExecutionError(f"HTTP {resp.status}: {data}")
                if resp.status >= 400:
                    raise ExecutionFailed(f"HTTP {resp.status}: {data}")
                return data
        except asyncio.TimeoutError as e:
            raise _TransientExecutionError(f"timeout calling {url}") from e
        except aiohttp.ClientError as e:
            raise _TransientExecutionError(f"{type(e).__name__}: {e}") from e
