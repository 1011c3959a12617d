"""
Raydium AMM v4 adapter
Classifies swaps from token balance differences around the pools a transaction touched
"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from spl.token.instructions import create_idempotent_associated_token_account

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.clients import raydium_amm
from mirrorbot.clients.raydium_amm import MarketState, PoolState
from mirrorbot.clients.rpc_client import SolanaRPCClient
from mirrorbot.clients.tx_submitter import TransactionSubmitter
from mirrorbot.core.config import RaydiumConfig
from mirrorbot.core.constants import (
    NATIVE_MINT,
    NATIVE_MINT_PUBKEY,
    RAYDIUM_AUTHORITY_V4,
    RAYDIUM_LIQUIDITY_POOL_V4,
    TOKEN_PROGRAM,
)
from mirrorbot.core.errors import ClassificationError, ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.models import (
    Dex,
    ExecutionResult,
    Position,
    QuoteResult,
    RawLeg,
    SwapFragment,
    SwapType,
    TradeDelta,
    swap_type_for,
)
from mirrorbot.core.transaction import ParsedTransaction, outer_instructions, owner_delta


logger = get_logger(__name__)

# getMultipleAccounts limit
MAX_ACCOUNTS_PER_REQUEST = 100


def trade_delta(transaction: ParsedTransaction, base_mint: str, quote_mint: str, owner: str) -> TradeDelta:
    """
    Balance change of `owner` across a pool's two mints

    The mint that went down is `less`. When neither went down, base is `less`.
    """
    base_diff = owner_delta(transaction, owner, base_mint)
    quote_diff = owner_delta(transaction, owner, quote_mint)

    if quote_diff < 0 and base_diff >= 0:
        return TradeDelta(less_mint=quote_mint, less_amount=quote_diff, more_mint=base_mint, more_amount=base_diff)
    return TradeDelta(less_mint=base_mint, less_amount=base_diff, more_mint=quote_mint, more_amount=quote_diff)


def candidate_pool_accounts(transaction: ParsedTransaction) -> List[str]:
    """Unique accounts of every outer instruction, first-seen order, token program excluded"""
    seen: Dict[str, None] = {}
    for instruction in outer_instructions(transaction):
        for account in instruction.get("accounts") or []:
            if account != TOKEN_PROGRAM and account not in seen:
                seen[account] = None
    return list(seen)


class RaydiumAdapter(ProtocolAdapter):
    """Balance-diff classification and direct AMM v4 swaps"""

    dex = Dex.RAYDIUM
    program_id = RAYDIUM_LIQUIDITY_POOL_V4

    def __init__(
        self,
        rpc_client: SolanaRPCClient,
        submitter: TransactionSubmitter,
        keypair: Keypair,
        config: RaydiumConfig,
        slippage_bps: int
    ):
        super().__init__(rpc_client, submitter, keypair)
        self.config = config
        self.slippage_bps = slippage_bps
        self._pools: Dict[str, PoolState] = {}
        self._markets: Dict[str, MarketState] = {}

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def discover_pools(self, transaction: ParsedTransaction) -> List[PoolState]:
        """AMM v4 pools referenced by the transaction's outer instructions"""
        candidates = candidate_pool_accounts(transaction)
        pools: List[PoolState] = []

        unknown = [address for address in candidates if address not in self._pools]
        for start in range(0, len(unknown), MAX_ACCOUNTS_PER_REQUEST):
            chunk = unknown[start:start + MAX_ACCOUNTS_PER_REQUEST]
            try:
                accounts = await self.rpc_client.get_multiple_accounts(chunk)
            except ExternalCallError as e:
                raise ClassificationError(f"pool discovery failed: {e}") from e

            for account in accounts:
                if account is None or not raydium_amm.is_pool_account(account.owner, account.data):
                    continue
                try:
                    self._pools[account.address] = raydium_amm.decode_pool_state(
                        Pubkey.from_string(account.address), account.data
                    )
                except ValueError as e:
                    raise ClassificationError(f"undecodable pool {account.address}: {e}") from e

        for address in candidates:
            if address in self._pools:
                pools.append(self._pools[address])
        return pools

    async def classify(self, transaction: ParsedTransaction, wallet: str) -> SwapFragment:
        pools = await self.discover_pools(transaction)
        if not pools:
            raise ClassificationError("no Raydium AMM v4 pool in transaction")

        if len(pools) == 1:
            return self._classify_single(transaction, pools[0])
        return self._classify_routed(transaction, pools, wallet)

    def _classify_single(self, transaction: ParsedTransaction, pool: PoolState) -> SwapFragment:
        """The pool authority's delta mirrors the trader's: what the pool gained the trader paid"""
        base_mint, quote_mint = str(pool.base_mint), str(pool.quote_mint)
        delta = trade_delta(transaction, base_mint, quote_mint, RAYDIUM_AUTHORITY_V4)
        if not (delta.less_amount < 0 and delta.more_amount > 0):
            raise ClassificationError(f"one-sided balance change in pool {pool.address}")

        decimals = {base_mint: pool.base_decimals, quote_mint: pool.quote_decimals}
        from_leg = RawLeg(delta.more_mint, abs(delta.more_amount), decimals[delta.more_mint])
        to_leg = RawLeg(delta.less_mint, abs(delta.less_amount), decimals[delta.less_mint])

        return SwapFragment(
            from_leg=from_leg,
            to_leg=to_leg,
            swap_type=swap_type_for(from_leg.mint, to_leg.mint),
            pool_address=str(pool.address),
        )

    def _classify_routed(self, transaction: ParsedTransaction, pools: List[PoolState], wallet: str) -> SwapFragment:
        """Multi-hop: what the wallet lost at the first pool and gained at the last"""
        first, last = pools[0], pools[-1]
        entry = trade_delta(transaction, str(first.base_mint), str(first.quote_mint), wallet)
        exit_ = trade_delta(transaction, str(last.base_mint), str(last.quote_mint), wallet)

        if entry.less_amount >= 0 or exit_.more_amount <= 0:
            raise ClassificationError("routed swap missing a wallet leg")

        logger.debug("routed_raydium_swap", pools=[str(p.address) for p in pools], wallet=wallet)

        (from_mint, spent), _ = entry.as_legs()
        _, (to_mint, received) = exit_.as_legs()
        return SwapFragment(
            from_leg=RawLeg(from_mint, spent, _pool_decimals(first, from_mint)),
            to_leg=RawLeg(to_mint, abs(received), _pool_decimals(last, to_mint)),
            swap_type=SwapType.SWAP,
            pool_address=str(first.address),
        )

    # ------------------------------------------------------------------
    # Pricing
    # ------------------------------------------------------------------

    async def load_pool(self, pool_address: str) -> PoolState:
        pool = self._pools.get(pool_address)
        if pool is not None:
            return pool

        account = await self.rpc_client.get_account_info(pool_address)
        if account is None or not raydium_amm.is_pool_account(account.owner, account.data):
            raise ExternalCallError(f"{pool_address} is not a Raydium AMM v4 pool")
        try:
            pool = raydium_amm.decode_pool_state(Pubkey.from_string(pool_address), account.data)
        except ValueError as e:
            raise ExternalCallError(f"undecodable pool {pool_address}: {e}") from e

        self._pools[pool_address] = pool
        return pool

    async def load_market(self, pool: PoolState) -> MarketState:
        key = str(pool.market_id)
        market = self._markets.get(key)
        if market is not None:
            return market

        account = await self.rpc_client.get_account_info(key)
        if account is None:
            raise ExternalCallError(f"market {key} not found")
        try:
            market = raydium_amm.decode_market_state(pool.market_id, account.data, pool.market_program_id)
        except ValueError as e:
            raise ExternalCallError(f"undecodable market {key}: {e}") from e

        self._markets[key] = market
        return market

    async def reserves(self, pool: PoolState, mint_in: str, mint_out: str) -> Tuple[int, int]:
        """Raw (reserve_in, reserve_out) vault balances"""
        try:
            vault_in, vault_out = pool.vaults_for(mint_in, mint_out)
        except ValueError as e:
            raise ExternalCallError(str(e)) from e

        reserve_in, reserve_out = await asyncio.gather(
            self.rpc_client.get_token_account_balance(str(vault_in)),
            self.rpc_client.get_token_account_balance(str(vault_out)),
        )
        return reserve_in, reserve_out

    async def quote(
        self,
        mint_in: str,
        mint_out: str,
        amount_in: int,
        slippage_bps: int,
        pool_address: Optional[str] = None
    ) -> QuoteResult:
        if pool_address is None:
            raise ExternalCallError("Raydium quote needs a pool address")

        pool = await self.load_pool(pool_address)
        reserve_in, reserve_out = await self.reserves(pool, mint_in, mint_out)
        out_amount = raydium_amm.constant_product_out(amount_in, reserve_in, reserve_out)

        return QuoteResult(
            in_amount=amount_in,
            out_amount=out_amount,
            raw={
                "min_out": raydium_amm.apply_slippage(out_amount, slippage_bps),
                "reserve_in": reserve_in,
                "reserve_out": reserve_out,
            }
        )

    async def exit_value(self, position: Position, slippage_bps: int) -> int:
        quote = await self.quote(position.mint, NATIVE_MINT, position.raw_amount, slippage_bps, position.pool_address)
        return quote.out_amount

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        mint_in: str,
        mint_out: str,
        amount_in: int,
        pool_address: Optional[str] = None
    ) -> ExecutionResult:
        try:
            signed_tx = await self.build_swap_transaction(mint_in, mint_out, amount_in, pool_address)
        except ExternalCallError as e:
            logger.warning("raydium_swap_build_failed", mint_in=mint_in, mint_out=mint_out, error=str(e))
            return ExecutionResult.failed(str(e))

        return await self._submit(signed_tx)

    async def build_swap_transaction(
        self,
        mint_in: str,
        mint_out: str,
        amount_in: int,
        pool_address: Optional[str]
    ) -> VersionedTransaction:
        quote = await self.quote(mint_in, mint_out, amount_in, self.slippage_bps, pool_address)
        pool = await self.load_pool(pool_address)
        market = await self.load_market(pool)

        owner = self.keypair.pubkey()
        mint_in_key = Pubkey.from_string(mint_in)
        mint_out_key = Pubkey.from_string(mint_out)

        instructions = [
            set_compute_unit_limit(self.config.compute_unit_limit),
            set_compute_unit_price(self.config.compute_unit_price_micro_lamports),
        ]

        if mint_in_key == NATIVE_MINT_PUBKEY:
            instructions.extend(raydium_amm.wrap_sol_instructions(owner, amount_in))
        instructions.append(create_idempotent_associated_token_account(owner, owner, mint_out_key))

        instructions.append(
            raydium_amm.swap_base_in_instruction(
                pool=pool,
                market=market,
                user_source=raydium_amm.derive_associated_token_account(owner, mint_in_key),
                user_destination=raydium_amm.derive_associated_token_account(owner, mint_out_key),
                owner=owner,
                amount_in=amount_in,
                min_amount_out=quote.raw["min_out"],
            )
        )

        if NATIVE_MINT_PUBKEY in (mint_in_key, mint_out_key):
            instructions.append(raydium_amm.close_wsol_instruction(owner))

        blockhash = await self.rpc_client.get_latest_blockhash()
        message = MessageV0.try_compile(owner, instructions, [], blockhash)

        logger.info(
            "raydium_swap_built",
            pool=pool_address,
            mint_in=mint_in,
            mint_out=mint_out,
            amount_in=amount_in,
            min_out=quote.raw["min_out"]
        )
        return VersionedTransaction(message, [self.keypair])

    async def measure_received(self, signature: str, mint_in: str, mint_out: str, decimals: int) -> Decimal:
        """What the pool authority lost of mint_out is what we received"""
        transaction = await self.fetch_own_transaction(signature)
        received = -owner_delta(transaction, RAYDIUM_AUTHORITY_V4, mint_out)
        if received <= 0:
            raise ExternalCallError(f"no {mint_out} left the pool in {signature}")
        return received


def _pool_decimals(pool: PoolState, mint: str) -> Optional[int]:
    if mint == str(pool.base_mint):
        return pool.base_decimals
    if mint == str(pool.quote_mint):
        return pool.quote_decimals
    return None
