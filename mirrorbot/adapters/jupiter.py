"""
Jupiter adapter
Classifies aggregator swaps by tracing the SPL token transfers the route made
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from solders.keypair import Keypair

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.clients.jupiter_client import JupiterClient
from mirrorbot.clients.rpc_client import SolanaRPCClient
from mirrorbot.clients.tx_submitter import TransactionSubmitter
from mirrorbot.core.constants import JUPITER_AGGREGATOR_V6, NATIVE_MINT
from mirrorbot.core.errors import ClassificationError, ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.models import (
    Dex,
    ExecutionResult,
    Position,
    QuoteResult,
    RawLeg,
    SwapFragment,
    TransferRecord,
    swap_type_for,
)
from mirrorbot.core.transaction import (
    ParsedTransaction,
    inner_instruction_groups,
    outer_instructions,
    token_account_mint,
)


logger = get_logger(__name__)

TRANSFER_TYPES = ("transfer", "transferChecked")


def _transfer_from_instruction(instruction: dict) -> Optional[TransferRecord]:
    parsed = instruction.get("parsed")
    if not isinstance(parsed, dict) or parsed.get("type") not in TRANSFER_TYPES:
        return None

    info = parsed.get("info") or {}
    if "amount" in info:
        amount = info["amount"]
    else:
        amount = (info.get("tokenAmount") or {}).get("amount")
    if amount is None:
        return None

    return TransferRecord(
        amount=int(amount),
        source=info.get("source", ""),
        destination=info.get("destination", ""),
        authority=info.get("authority") or info.get("multisigAuthority"),
    )


def trace_transfers(transaction: ParsedTransaction, program_id: str = JUPITER_AGGREGATOR_V6) -> List[TransferRecord]:
    """
    Token transfers made inside the aggregator's outer instructions, in order

    Only inner groups whose outer index lies between the first and the last
    aggregator instruction are considered.
    """
    indices = [
        index for index, instruction in enumerate(outer_instructions(transaction))
        if instruction.get("programId") == program_id
    ]
    if not indices:
        return []
    first, last = indices[0], indices[-1]

    transfers = []
    for group in inner_instruction_groups(transaction):
        if not first <= group.get("index", -1) <= last:
            continue
        for instruction in group.get("instructions") or []:
            record = _transfer_from_instruction(instruction)
            if record is not None:
                transfers.append(record)
    return transfers


def canonical_transfers(transfers: List[TransferRecord], wallet: str) -> Tuple[TransferRecord, TransferRecord]:
    """
    The (in, out) transfers of a route

    The first transfer is what the wallet paid. The last one is what it
    received, unless the wallet itself signed it (a trailing fee or tip), in
    which case the one before it is the payout.

    Raises:
        ClassificationError: With fewer than two transfers
    """
    if len(transfers) < 2:
        raise ClassificationError(f"expected at least 2 token transfers, found {len(transfers)}")

    outgoing = transfers[-1]
    if outgoing.authority == wallet:
        outgoing = transfers[-2]
    return transfers[0], outgoing


class JupiterAdapter(ProtocolAdapter):
    """Transfer-trace classification plus quote/swap through the Jupiter HTTP API"""

    dex = Dex.JUPITER
    program_id = JUPITER_AGGREGATOR_V6

    def __init__(
        self,
        rpc_client: SolanaRPCClient,
        submitter: TransactionSubmitter,
        keypair: Keypair,
        jupiter_client: JupiterClient,
        slippage_bps: int
    ):
        super().__init__(rpc_client, submitter, keypair)
        self.jupiter_client = jupiter_client
        self.slippage_bps = slippage_bps

    async def classify(self, transaction: ParsedTransaction, wallet: str) -> SwapFragment:
        transfer_in, transfer_out = canonical_transfers(trace_transfers(transaction, self.program_id), wallet)

        mint_in, decimals_in = await self._resolve_mint(transaction, transfer_in)
        mint_out, decimals_out = await self._resolve_mint(transaction, transfer_out)

        return SwapFragment(
            from_leg=RawLeg(mint_in, _scale(transfer_in.amount, decimals_in), decimals_in),
            to_leg=RawLeg(mint_out, _scale(transfer_out.amount, decimals_out), decimals_out),
            swap_type=swap_type_for(mint_in, mint_out),
        )

    async def _resolve_mint(self, transaction: ParsedTransaction, transfer: TransferRecord) -> Tuple[str, int]:
        """Mint and decimals of a transfer, from the transaction's balances first, then the chain"""
        for address in (transfer.source, transfer.destination):
            found = token_account_mint(transaction, address)
            if found is not None:
                return found

        for address in (transfer.source, transfer.destination):
            try:
                account = await self.rpc_client.get_parsed_account(address)
            except ExternalCallError as e:
                logger.debug("token_account_fetch_failed", address=address, error=str(e))
                continue
            try:
                info = account["data"]["parsed"]["info"]
                return info["mint"], int(info["tokenAmount"]["decimals"])
            except (KeyError, TypeError, ValueError):
                continue

        raise ClassificationError(
            f"could not resolve mint for transfer {transfer.source} -> {transfer.destination}"
        )

    async def quote(
        self,
        mint_in: str,
        mint_out: str,
        amount_in: int,
        slippage_bps: int,
        pool_address: Optional[str] = None
    ) -> QuoteResult:
        return await self.jupiter_client.quote(mint_in, mint_out, amount_in, slippage_bps)

    async def execute(
        self,
        mint_in: str,
        mint_out: str,
        amount_in: int,
        pool_address: Optional[str] = None
    ) -> ExecutionResult:
        try:
            quote = await self.quote(mint_in, mint_out, amount_in, self.slippage_bps)
            signed_tx = await self.jupiter_client.swap_transaction(quote, self.keypair)
        except ExternalCallError as e:
            logger.warning("jupiter_swap_build_failed", mint_in=mint_in, mint_out=mint_out, error=str(e))
            return ExecutionResult.failed(str(e))
        except ValueError as e:
            # undeserializable swapTransaction
            return ExecutionResult.failed(f"invalid swap transaction: {e}")

        logger.info(
            "jupiter_swap_submitting",
            mint_in=mint_in,
            mint_out=mint_out,
            amount_in=amount_in,
            expected_out=quote.out_amount
        )
        return await self._submit(signed_tx)

    async def measure_received(self, signature: str, mint_in: str, mint_out: str, decimals: int) -> Decimal:
        transaction = await self.fetch_own_transaction(signature)
        try:
            _, transfer_out = canonical_transfers(trace_transfers(transaction, self.program_id), self.owner)
        except ClassificationError as e:
            raise ExternalCallError(f"cannot measure {signature}: {e}") from e
        return _scale(transfer_out.amount, decimals)

    async def exit_value(self, position: Position, slippage_bps: int) -> int:
        quote = await self.quote(position.mint, NATIVE_MINT, position.raw_amount, slippage_bps)
        return quote.out_amount


def _scale(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)
