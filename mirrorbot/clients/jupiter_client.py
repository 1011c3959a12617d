"""
Jupiter v6 HTTP API client
/quote for routing and /swap for a ready-to-sign versioned transaction
"""

import asyncio
import base64
from typing import Any, Dict, Optional

import aiohttp
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from mirrorbot.core.config import JupiterConfig
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import LatencyTimer, get_metrics
from mirrorbot.core.models import QuoteResult


logger = get_logger(__name__)
metrics = get_metrics()


class JupiterClient:
    """
    Thin async wrapper over the Jupiter aggregator API

    Usage:
        client = JupiterClient(jupiter_config)
        await client.start()
        quote = await client.quote(NATIVE_MINT, mint, 10_000_000, slippage_bps=500)
        signed_tx = await client.swap_transaction(quote, keypair)
    """

    def __init__(self, config: JupiterConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_s)
            )

    async def stop(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise ExternalCallError("Jupiter session not started. Call start() first.")
        return self._session

    async def quote(self, input_mint: str, output_mint: str, amount: int, slippage_bps: int) -> QuoteResult:
        """
        Best route for `amount` base units of input_mint

        Raises:
            ExternalCallError: On HTTP failure or a response without outAmount
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps)
        }

        body = await self._request("GET", "/quote", params=params)
        if "outAmount" not in body:
            raise ExternalCallError(f"Jupiter quote missing outAmount: {body.get('error', body)}")

        return QuoteResult(
            in_amount=int(body.get("inAmount", amount)),
            out_amount=int(body["outAmount"]),
            raw=body
        )

    async def swap_transaction(self, quote: QuoteResult, keypair: Keypair) -> VersionedTransaction:
        """Request the swap transaction for a quote and sign it with `keypair`"""
        payload = {
            "quoteResponse": quote.raw,
            "userPublicKey": str(keypair.pubkey()),
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": self.config.priority_fee_lamports
        }

        body = await self._request("POST", "/swap", json=payload)
        swap_tx = body.get("swapTransaction")
        if not swap_tx:
            raise ExternalCallError(f"Jupiter swap response without swapTransaction: {body.get('error', body)}")

        unsigned = VersionedTransaction.from_bytes(base64.b64decode(swap_tx))
        return VersionedTransaction(unsigned.message, [keypair])

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        session = self._require_session()
        url = f"{self.config.api_url.rstrip('/')}{path}"

        try:
            with LatencyTimer(metrics, f"jupiter{path.replace('/', '_')}"):
                async with session.request(method, url, **kwargs) as response:
                    if response.status != 200:
                        text = await response.text()
                        metrics.increment_counter("jupiter_errors", labels={"path": path})
                        raise ExternalCallError(f"Jupiter {path} returned {response.status}: {text}")
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            metrics.increment_counter("jupiter_errors", labels={"path": path})
            raise ExternalCallError(f"Jupiter {path} failed: {e}") from e
