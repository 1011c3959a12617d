"""
Solana RPC client
HTTP JSON-RPC over aiohttp and logsSubscribe over websockets, with reconnect backoff
"""

import asyncio
import base64
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import aiohttp
import websockets
from solders.hash import Hash

from mirrorbot.core.config import RPCConfig
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import LatencyTimer, get_metrics
from mirrorbot.core.models import LogNotification


logger = get_logger(__name__)
metrics = get_metrics()


@dataclass
class AccountInfo:
    """Raw account as returned with base64 encoding"""
    address: str
    owner: str
    lamports: int
    data: bytes

    @classmethod
    def from_rpc(cls, address: str, value: Dict[str, Any]) -> "AccountInfo":
        data_field = value.get("data") or ["", "base64"]
        raw = base64.b64decode(data_field[0]) if isinstance(data_field, list) else b""
        return cls(
            address=address,
            owner=value.get("owner", ""),
            lamports=int(value.get("lamports", 0)),
            data=raw
        )


class SolanaRPCClient:
    """
    Single-endpoint Solana RPC client

    Usage:
        client = SolanaRPCClient(rpc_config)
        await client.start()
        tx = await client.get_transaction(signature)
        async for notification in client.subscribe_logs(wallet):
            ...
        await client.stop()
    """

    def __init__(self, config: RPCConfig):
        self.config = config
        self._session: Optional[aiohttp.ClientSession] = None
        self._running = False
        self._request_id = 0

        logger.info("rpc_client_initialized", http_url=config.http_url, commitment=config.commitment)

    async def start(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        self._running = True

    async def stop(self) -> None:
        self._running = False
        if self._session is not None:
            await self._session.close()
            self._session = None
        logger.info("rpc_client_stopped")

    async def __aenter__(self) -> "SolanaRPCClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def call(self, method: str, params: List[Any], timeout: Optional[float] = None) -> Any:
        """
        Make a JSON-RPC call and return its `result`

        Raises:
            ExternalCallError: On transport failure, timeout or an RPC error object
        """
        if self._session is None:
            raise ExternalCallError("RPC session not started. Call start() first.")

        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        try:
            with LatencyTimer(metrics, f"rpc_{method}"):
                async with self._session.post(
                    self.config.http_url,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=timeout or self.config.timeout_s)
                ) as response:
                    body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as e:
            metrics.increment_counter("rpc_errors", labels={"method": method})
            raise ExternalCallError(f"{method} failed: {e}") from e

        if "error" in body:
            metrics.increment_counter("rpc_errors", labels={"method": method})
            error = body["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise ExternalCallError(f"{method} RPC error: {message}")

        return body.get("result")

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Fetch a confirmed transaction in jsonParsed encoding; None if the node does not have it"""
        return await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": self.config.commitment,
                    "maxSupportedTransactionVersion": 0
                }
            ]
        )

    async def get_account_info(self, address: str) -> Optional[AccountInfo]:
        result = await self.call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.config.commitment}]
        )
        value = (result or {}).get("value")
        if not value:
            return None
        return AccountInfo.from_rpc(address, value)

    async def get_parsed_account(self, address: str) -> Optional[Dict[str, Any]]:
        """jsonParsed account value (token accounts and mints decode to `data.parsed`)"""
        result = await self.call(
            "getAccountInfo",
            [address, {"encoding": "jsonParsed", "commitment": self.config.commitment}]
        )
        return (result or {}).get("value")

    async def get_multiple_accounts(self, addresses: List[str]) -> List[Optional[AccountInfo]]:
        result = await self.call(
            "getMultipleAccounts",
            [addresses, {"encoding": "base64", "commitment": self.config.commitment}]
        )
        values = (result or {}).get("value") or []
        return [
            AccountInfo.from_rpc(address, value) if value else None
            for address, value in zip(addresses, values)
        ]

    async def get_token_account_balance(self, address: str) -> int:
        """Raw token amount held by a token account"""
        result = await self.call("getTokenAccountBalance", [address, {"commitment": self.config.commitment}])
        value = (result or {}).get("value")
        if not value:
            raise ExternalCallError(f"No token balance for {address}")
        return int(value["amount"])

    async def get_latest_blockhash(self) -> Hash:
        result = await self.call("getLatestBlockhash", [{"commitment": self.config.commitment}])
        return Hash.from_string(result["value"]["blockhash"])

    async def send_transaction(self, tx_bytes: bytes, skip_preflight: bool = True) -> str:
        """Broadcast a signed, serialized transaction and return its signature"""
        encoded = base64.b64encode(tx_bytes).decode("utf-8")
        return await self.call(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": skip_preflight,
                    "preflightCommitment": self.config.commitment,
                    # retries are handled by TransactionSubmitter
                    "maxRetries": 0
                }
            ]
        )

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        result = await self.call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}]
        )
        statuses = (result or {}).get("value") or []
        return statuses[0] if statuses else None

    async def subscribe_logs(self, address: str) -> AsyncIterator[LogNotification]:
        """
        Yield log notifications for transactions mentioning `address`

        Reconnects with exponential backoff until stop() is called.
        """
        attempt = 0
        while self._running:
            try:
                async with websockets.connect(self.config.ws_url, ping_interval=20) as ws:
                    await ws.send(json.dumps({
                        "jsonrpc": "2.0",
                        "id": 1,
                        "method": "logsSubscribe",
                        "params": [{"mentions": [address]}, {"commitment": self.config.commitment}]
                    }))
                    logger.info("logs_subscription_opened", address=address)
                    attempt = 0

                    async for message in ws:
                        data = json.loads(message)
                        if data.get("method") != "logsNotification":
                            if "error" in data:
                                raise ExternalCallError(f"logsSubscribe rejected: {data['error']}")
                            continue

                        value = ((data.get("params") or {}).get("result") or {}).get("value") or {}
                        metrics.increment_counter("log_notifications")
                        yield LogNotification.from_rpc(value)

            except asyncio.CancelledError:
                raise
            except (websockets.exceptions.WebSocketException, OSError, json.JSONDecodeError, ExternalCallError) as e:
                attempt += 1
                delay_ms = min(
                    self.config.reconnect_backoff_base_ms * (2 ** min(attempt, 10)),
                    self.config.reconnect_backoff_max_ms
                )
                logger.warning(
                    "logs_subscription_lost",
                    address=address,
                    error=str(e),
                    attempt=attempt,
                    retry_in_ms=delay_ms
                )
                metrics.increment_counter("log_subscription_reconnects")
                await asyncio.sleep(delay_ms / 1000)
