"""
Transaction Submitter
Sends signed transactions with retry/backoff and polls getSignatureStatuses until a final status
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from solders.transaction import VersionedTransaction

from mirrorbot.clients.rpc_client import SolanaRPCClient
from mirrorbot.core.config import TransactionConfig
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import LatencyTimer, get_metrics


logger = get_logger(__name__)
metrics = get_metrics()


class ConfirmationStatus(Enum):
    """Transaction confirmation status"""
    PENDING = "pending"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    TIMEOUT = "timeout"


_STATUS_BY_LEVEL = {
    "processed": ConfirmationStatus.PROCESSED,
    "confirmed": ConfirmationStatus.CONFIRMED,
    "finalized": ConfirmationStatus.FINALIZED,
}


@dataclass
class ConfirmedTransaction:
    """Final state of a submitted transaction"""
    signature: str
    confirmation_status: ConfirmationStatus
    slot: int = 0
    error: Optional[str] = None
    confirmed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.confirmation_status in (ConfirmationStatus.CONFIRMED, ConfirmationStatus.FINALIZED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "confirmation_status": self.confirmation_status.value,
            "slot": self.slot,
            "error": self.error,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None
        }


class TransactionSubmitter:
    """
    Submits signed transactions and tracks them to confirmation

    Usage:
        submitter = TransactionSubmitter(rpc_client, transaction_config)
        confirmed = await submitter.submit_and_confirm(signed_tx)
        if confirmed.succeeded:
            ...
    """

    def __init__(self, rpc_client: SolanaRPCClient, config: Optional[TransactionConfig] = None):
        self.rpc_client = rpc_client
        self.config = config or TransactionConfig()

        logger.info(
            "transaction_submitter_initialized",
            skip_preflight=self.config.skip_preflight,
            max_retries=self.config.max_retries,
            confirmation_timeout_s=self.config.confirmation_timeout_s
        )

    async def submit_transaction(self, signed_tx: VersionedTransaction) -> str:
        """
        Send a signed transaction, retrying with exponential backoff

        Returns:
            The transaction signature

        Raises:
            ExternalCallError: If every attempt fails
        """
        tx_bytes = bytes(signed_tx)
        max_retries = self.config.max_retries
        last_error = None

        for attempt in range(max_retries):
            try:
                signature = await self.rpc_client.send_transaction(
                    tx_bytes,
                    skip_preflight=self.config.skip_preflight
                )
                metrics.increment_counter("transactions_submitted_success")
                logger.info("transaction_submitted", signature=signature, attempt=attempt + 1)
                return signature

            except ExternalCallError as e:
                last_error = e
                logger.warning(
                    "transaction_submission_error",
                    error=str(e),
                    attempt=attempt + 1,
                    max_retries=max_retries
                )

            if attempt < max_retries - 1:
                delay = self.config.retry_delay_ms * (2 ** attempt) / 1000
                await asyncio.sleep(delay)

        metrics.increment_counter("transactions_submitted_failed")
        raise ExternalCallError(f"Transaction submission failed after {max_retries} attempts: {last_error}")

    async def submit_and_confirm(self, signed_tx: VersionedTransaction) -> ConfirmedTransaction:
        """
        Submit and wait for a final status

        Submission failures raise ExternalCallError; on-chain failures and
        timeouts come back as a ConfirmedTransaction with FAILED/TIMEOUT status.
        """
        with LatencyTimer(metrics, "tx_submit_and_confirm"):
            signature = await self.submit_transaction(signed_tx)
            return await self.wait_for_confirmation(signature)

    async def wait_for_confirmation(self, signature: str) -> ConfirmedTransaction:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.confirmation_timeout_s

        while loop.time() < deadline:
            status = await self._get_status(signature)

            if status is not None and status.confirmation_status in (
                ConfirmationStatus.CONFIRMED,
                ConfirmationStatus.FINALIZED,
                ConfirmationStatus.FAILED
            ):
                metrics.increment_counter(
                    "transaction_confirmations",
                    labels={"status": status.confirmation_status.value}
                )
                return status

            await asyncio.sleep(self.config.confirmation_poll_interval_s)

        metrics.increment_counter("transaction_confirmations_timeout")
        logger.warning("transaction_confirmation_timeout", signature=signature)
        return ConfirmedTransaction(
            signature=signature,
            confirmation_status=ConfirmationStatus.TIMEOUT,
            error=f"Confirmation timed out after {self.config.confirmation_timeout_s}s"
        )

    async def _get_status(self, signature: str) -> Optional[ConfirmedTransaction]:
        try:
            status_data = await self.rpc_client.get_signature_status(signature)
        except ExternalCallError as e:
            logger.warning("get_signature_status_error", signature=signature, error=str(e))
            return None

        if not status_data:
            return None

        status = _STATUS_BY_LEVEL.get(status_data.get("confirmationStatus"), ConfirmationStatus.PENDING)
        error = None
        if status_data.get("err"):
            status = ConfirmationStatus.FAILED
            error = str(status_data["err"])

        return ConfirmedTransaction(
            signature=signature,
            confirmation_status=status,
            slot=status_data.get("slot", 0),
            error=error,
            confirmed_at=datetime.now(timezone.utc)
        )
