"""
Protocol adapter interface
One adapter per DEX: classify observed swaps, quote, execute and measure our own swaps
"""

import asyncio
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, Optional

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from mirrorbot.clients.rpc_client import SolanaRPCClient
from mirrorbot.clients.tx_submitter import TransactionSubmitter
from mirrorbot.core.constants import lamports_to_sol
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import get_metrics
from mirrorbot.core.models import Dex, ExecutionResult, Position, QuoteResult, SwapFragment
from mirrorbot.core.transaction import ParsedTransaction, fee_lamports


logger = get_logger(__name__)
metrics = get_metrics()

OWN_TRANSACTION_FETCH_ATTEMPTS = 3
OWN_TRANSACTION_FETCH_DELAY_S = 1.0


class ProtocolAdapter(ABC):
    """
    Base class for DEX adapters

    Subclasses set `dex` and `program_id` and implement the swap-specific
    operations. Signing, submission and fetching our own confirmed
    transactions are shared here.
    """

    dex: Dex
    program_id: str

    def __init__(self, rpc_client: SolanaRPCClient, submitter: TransactionSubmitter, keypair: Keypair):
        self.rpc_client = rpc_client
        self.submitter = submitter
        self.keypair = keypair

    @property
    def owner(self) -> str:
        return str(self.keypair.pubkey())

    def detect(self, log_lines: Iterable[str]) -> bool:
        """True when any log line mentions this adapter's program"""
        return any(self.program_id in line for line in log_lines)

    @abstractmethod
    async def classify(self, transaction: ParsedTransaction, wallet: str) -> SwapFragment:
        """
        Raises:
            ClassificationError: If the transaction is not a swap this adapter understands
        """

    @abstractmethod
    async def quote(
        self,
        mint_in: str,
        mint_out: str,
        amount_in: int,
        slippage_bps: int,
        pool_address: Optional[str] = None
    ) -> QuoteResult:
        """
        Raises:
            ExternalCallError: If no quote can be produced
        """

    @abstractmethod
    async def execute(
        self,
        mint_in: str,
        mint_out: str,
        amount_in: int,
        pool_address: Optional[str] = None
    ) -> ExecutionResult:
        """Swap `amount_in` base units; failures come back as ExecutionResult(success=False)"""

    @abstractmethod
    async def measure_received(self, signature: str, mint_in: str, mint_out: str, decimals: int) -> Decimal:
        """UI amount of mint_out our confirmed transaction delivered"""

    @abstractmethod
    async def exit_value(self, position: Position, slippage_bps: int) -> int:
        """Lamports the full position would fetch if sold now"""

    async def fee_paid(self, signature: str) -> Decimal:
        """Network fee of one of our transactions, in SOL"""
        transaction = await self.fetch_own_transaction(signature)
        return lamports_to_sol(fee_lamports(transaction))

    async def fetch_own_transaction(self, signature: str) -> ParsedTransaction:
        """
        Fetch a transaction we just confirmed

        Nodes can lag a moment behind the confirmation status, so a missing
        transaction is retried a few times before giving up.
        """
        for attempt in range(OWN_TRANSACTION_FETCH_ATTEMPTS):
            transaction = await self.rpc_client.get_transaction(signature)
            if transaction is not None:
                return transaction
            if attempt < OWN_TRANSACTION_FETCH_ATTEMPTS - 1:
                await asyncio.sleep(OWN_TRANSACTION_FETCH_DELAY_S)

        raise ExternalCallError(f"Transaction {signature} not available")

    async def _submit(self, signed_tx: VersionedTransaction) -> ExecutionResult:
        try:
            confirmed = await self.submitter.submit_and_confirm(signed_tx)
        except ExternalCallError as e:
            metrics.increment_counter("swaps_failed", labels={"dex": self.dex.value})
            return ExecutionResult.failed(str(e))

        if not confirmed.succeeded:
            metrics.increment_counter("swaps_failed", labels={"dex": self.dex.value})
            return ExecutionResult(
                success=False,
                signature=confirmed.signature,
                error=confirmed.error or confirmed.confirmation_status.value
            )

        metrics.increment_counter("swaps_confirmed", labels={"dex": self.dex.value})
        return ExecutionResult(success=True, signature=confirmed.signature)
