"""
Program ids, mints and unit conversions shared across the bot
"""

from decimal import Decimal

from solders.pubkey import Pubkey


LAMPORTS_PER_SOL = 1_000_000_000

# Native SOL is represented by the wrapped mint in token balances and swap routes
NATIVE_MINT = "So11111111111111111111111111111111111111112"
NATIVE_DECIMALS = 9
NATIVE_SYMBOL = "SOL"

JUPITER_AGGREGATOR_V6 = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"
RAYDIUM_LIQUIDITY_POOL_V4 = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
RAYDIUM_AUTHORITY_V4 = "5Q544fKrFoe6tsEbD7S8EmxGTJYAKtTVhAW5Q5pge4j1"

TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"
METADATA_PROGRAM = "metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s"

NATIVE_MINT_PUBKEY = Pubkey.from_string(NATIVE_MINT)
RAYDIUM_LIQUIDITY_POOL_V4_PUBKEY = Pubkey.from_string(RAYDIUM_LIQUIDITY_POOL_V4)
RAYDIUM_AUTHORITY_V4_PUBKEY = Pubkey.from_string(RAYDIUM_AUTHORITY_V4)
TOKEN_PROGRAM_ID = Pubkey.from_string(TOKEN_PROGRAM)
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string(ASSOCIATED_TOKEN_PROGRAM)
METADATA_PROGRAM_ID = Pubkey.from_string(METADATA_PROGRAM)

# Size of a Raydium AMM v4 pool state account
RAYDIUM_POOL_ACCOUNT_SIZE = 752


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)
