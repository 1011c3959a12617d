"""
Raydium AMM v4 helpers
Pool and OpenBook market decoding, PDA/ATA derivation, swap instruction building
"""

import struct
from dataclasses import dataclass
from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from spl.token.instructions import (
    CloseAccountParams,
    SyncNativeParams,
    close_account,
    create_idempotent_associated_token_account,
    get_associated_token_address,
    sync_native,
)

from mirrorbot.core.constants import (
    NATIVE_MINT_PUBKEY,
    RAYDIUM_AUTHORITY_V4_PUBKEY,
    RAYDIUM_LIQUIDITY_POOL_V4_PUBKEY,
    RAYDIUM_POOL_ACCOUNT_SIZE,
    TOKEN_PROGRAM_ID,
)


SWAP_BASE_IN_INSTRUCTION = 9
MARKET_STATE_V3_SIZE = 388


def _pubkey_at(data: bytes, offset: int) -> Pubkey:
    return Pubkey.from_bytes(data[offset:offset + 32])


@dataclass(frozen=True)
class PoolState:
    """Fields of a LIQUIDITY_STATE_V4 account needed to quote and swap"""
    address: Pubkey
    base_decimals: int
    quote_decimals: int
    base_vault: Pubkey
    quote_vault: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    lp_mint: Pubkey
    open_orders: Pubkey
    market_id: Pubkey
    market_program_id: Pubkey
    target_orders: Pubkey

    def vaults_for(self, mint_in: str, mint_out: str):
        """(vault_in, vault_out) for a swap direction"""
        if str(self.base_mint) == mint_in and str(self.quote_mint) == mint_out:
            return self.base_vault, self.quote_vault
        if str(self.quote_mint) == mint_in and str(self.base_mint) == mint_out:
            return self.quote_vault, self.base_vault
        raise ValueError(f"pool {self.address} does not trade {mint_in} -> {mint_out}")


@dataclass(frozen=True)
class MarketState:
    """OpenBook MARKET_STATE_V3 accounts referenced by swapBaseIn"""
    address: Pubkey
    bids: Pubkey
    asks: Pubkey
    event_queue: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    vault_signer: Pubkey


def is_pool_account(owner: str, data: bytes) -> bool:
    return owner == str(RAYDIUM_LIQUIDITY_POOL_V4_PUBKEY) and len(data) == RAYDIUM_POOL_ACCOUNT_SIZE


def decode_pool_state(address: Pubkey, data: bytes) -> PoolState:
    """
    Decode a 752-byte AMM v4 account

    Raises:
        ValueError: If the data is not a pool account
    """
    if len(data) != RAYDIUM_POOL_ACCOUNT_SIZE:
        raise ValueError(f"pool account must be {RAYDIUM_POOL_ACCOUNT_SIZE} bytes, got {len(data)}")

    base_decimals, quote_decimals = struct.unpack_from("<QQ", data, 32)

    return PoolState(
        address=address,
        base_decimals=base_decimals,
        quote_decimals=quote_decimals,
        base_vault=_pubkey_at(data, 336),
        quote_vault=_pubkey_at(data, 368),
        base_mint=_pubkey_at(data, 400),
        quote_mint=_pubkey_at(data, 432),
        lp_mint=_pubkey_at(data, 464),
        open_orders=_pubkey_at(data, 496),
        market_id=_pubkey_at(data, 528),
        market_program_id=_pubkey_at(data, 560),
        target_orders=_pubkey_at(data, 592),
    )


def derive_vault_signer(market_id: Pubkey, nonce: int, market_program_id: Pubkey) -> Pubkey:
    return Pubkey.create_program_address(
        [bytes(market_id), struct.pack("<Q", nonce)],
        market_program_id
    )


def decode_market_state(address: Pubkey, data: bytes, market_program_id: Pubkey) -> MarketState:
    """
    Decode an OpenBook market account

    Raises:
        ValueError: If the data is too short to be a market
    """
    if len(data) < MARKET_STATE_V3_SIZE:
        raise ValueError(f"market account must be at least {MARKET_STATE_V3_SIZE} bytes, got {len(data)}")

    nonce = struct.unpack_from("<Q", data, 45)[0]

    return MarketState(
        address=address,
        bids=_pubkey_at(data, 285),
        asks=_pubkey_at(data, 317),
        event_queue=_pubkey_at(data, 253),
        base_vault=_pubkey_at(data, 117),
        quote_vault=_pubkey_at(data, 165),
        vault_signer=derive_vault_signer(address, nonce, market_program_id),
    )


def derive_associated_token_account(owner: Pubkey, mint: Pubkey) -> Pubkey:
    return get_associated_token_address(owner, mint)


def wrap_sol_instructions(owner: Pubkey, lamports: int) -> List[Instruction]:
    """Fund the owner's WSOL account with `lamports` and sync its token balance"""
    wsol_account = derive_associated_token_account(owner, NATIVE_MINT_PUBKEY)
    return [
        create_idempotent_associated_token_account(owner, owner, NATIVE_MINT_PUBKEY),
        transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_account, lamports=lamports)),
        sync_native(SyncNativeParams(program_id=TOKEN_PROGRAM_ID, account=wsol_account)),
    ]


def close_wsol_instruction(owner: Pubkey) -> Instruction:
    """Close the owner's WSOL account, returning its lamports as native SOL"""
    return close_account(
        CloseAccountParams(
            program_id=TOKEN_PROGRAM_ID,
            account=derive_associated_token_account(owner, NATIVE_MINT_PUBKEY),
            dest=owner,
            owner=owner,
        )
    )


def swap_base_in_instruction(
    pool: PoolState,
    market: MarketState,
    user_source: Pubkey,
    user_destination: Pubkey,
    owner: Pubkey,
    amount_in: int,
    min_amount_out: int
) -> Instruction:
    """AMM v4 swapBaseIn with the 18-account OpenBook layout"""
    data = struct.pack("<BQQ", SWAP_BASE_IN_INSTRUCTION, amount_in, min_amount_out)

    accounts = [
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=RAYDIUM_AUTHORITY_V4_PUBKEY, is_signer=False, is_writable=False),
        AccountMeta(pubkey=pool.open_orders, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.target_orders, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.base_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.quote_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=pool.market_program_id, is_signer=False, is_writable=False),
        AccountMeta(pubkey=market.address, is_signer=False, is_writable=True),
        AccountMeta(pubkey=market.bids, is_signer=False, is_writable=True),
        AccountMeta(pubkey=market.asks, is_signer=False, is_writable=True),
        AccountMeta(pubkey=market.event_queue, is_signer=False, is_writable=True),
        AccountMeta(pubkey=market.base_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=market.quote_vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=market.vault_signer, is_signer=False, is_writable=False),
        AccountMeta(pubkey=user_source, is_signer=False, is_writable=True),
        AccountMeta(pubkey=user_destination, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
    ]

    return Instruction(RAYDIUM_LIQUIDITY_POOL_V4_PUBKEY, data, accounts)


def constant_product_out(amount_in: int, reserve_in: int, reserve_out: int) -> int:
    """x*y=k output for `amount_in`, pool fee ignored"""
    if amount_in <= 0 or reserve_out <= 0:
        return 0
    return (amount_in * reserve_out) // (reserve_in + amount_in)


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Minimum acceptable output after `slippage_bps` basis points of tolerance"""
    return amount * (10_000 - slippage_bps) // 10_000
