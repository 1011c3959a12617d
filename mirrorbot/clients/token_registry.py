"""
Token metadata lookup
Decimals from the mint account, name/symbol from the Metaplex metadata PDA
"""

import struct
from typing import Dict, Tuple

from solders.pubkey import Pubkey

from mirrorbot.clients.rpc_client import SolanaRPCClient
from mirrorbot.core.constants import METADATA_PROGRAM_ID, NATIVE_DECIMALS, NATIVE_MINT, NATIVE_SYMBOL
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.models import TokenInfo


logger = get_logger(__name__)

METADATA_SEED = b"metadata"
# key (u8) + update_authority + mint
METADATA_STRINGS_OFFSET = 1 + 32 + 32
LOOKALIKE_SYMBOL = "SPL Token"

NATIVE_TOKEN = TokenInfo(name="Solana", symbol=NATIVE_SYMBOL, address=NATIVE_MINT, decimals=NATIVE_DECIMALS)


def derive_metadata_pda(mint: Pubkey) -> Pubkey:
    pda, _ = Pubkey.find_program_address(
        [METADATA_SEED, bytes(METADATA_PROGRAM_ID), bytes(mint)],
        METADATA_PROGRAM_ID
    )
    return pda


def _read_borsh_string(data: bytes, offset: int) -> Tuple[str, int]:
    (length,) = struct.unpack_from("<I", data, offset)
    offset += 4
    raw = data[offset:offset + length]
    if len(raw) != length:
        raise ValueError("metadata string runs past end of account")
    return raw.decode("utf-8", errors="ignore").rstrip("\x00").strip(), offset + length


def decode_metadata(data: bytes) -> Tuple[str, str]:
    """(name, symbol) from a Metaplex metadata account"""
    name, offset = _read_borsh_string(data, METADATA_STRINGS_OFFSET)
    symbol, _ = _read_borsh_string(data, offset)
    return name, symbol


def short_mint(mint: str) -> str:
    return f"{mint[:4]}...{mint[-4:]}"


class TokenRegistry:
    """
    Resolves and caches TokenInfo per mint

    Symbols are display-only. A non-native mint that calls itself SOL is
    relabelled so it can never be mistaken for native SOL in logs.
    """

    def __init__(self, rpc_client: SolanaRPCClient):
        self.rpc_client = rpc_client
        self._cache: Dict[str, TokenInfo] = {NATIVE_MINT: NATIVE_TOKEN}

    async def resolve(self, mint: str) -> TokenInfo:
        """
        Raises:
            ExternalCallError: If the mint account cannot be fetched or is not a mint
        """
        info = self._cache.get(mint)
        if info is not None:
            return info

        decimals = await self.get_decimals(mint)
        name, symbol = await self._fetch_metadata(mint)

        if symbol == NATIVE_SYMBOL:
            symbol = LOOKALIKE_SYMBOL

        info = TokenInfo(name=name, symbol=symbol, address=mint, decimals=decimals)
        self._cache[mint] = info
        logger.debug("token_resolved", mint=mint, symbol=symbol, decimals=decimals)
        return info

    async def get_decimals(self, mint: str) -> int:
        if mint in self._cache:
            return self._cache[mint].decimals

        account = await self.rpc_client.get_parsed_account(mint)
        try:
            return int(account["data"]["parsed"]["info"]["decimals"])
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalCallError(f"{mint} is not a readable mint account") from e

    async def _fetch_metadata(self, mint: str) -> Tuple[str, str]:
        fallback = (short_mint(mint), short_mint(mint))
        try:
            account = await self.rpc_client.get_account_info(str(derive_metadata_pda(Pubkey.from_string(mint))))
        except ExternalCallError as e:
            logger.warning("token_metadata_fetch_failed", mint=mint, error=str(e))
            return fallback

        if account is None:
            return fallback

        try:
            name, symbol = decode_metadata(account.data)
        except (struct.error, ValueError) as e:
            logger.warning("token_metadata_undecodable", mint=mint, error=str(e))
            return fallback

        return name or fallback[0], symbol or fallback[1]
