"""
Pytest configuration and shared fixtures
Fakes for the network-facing collaborators and builders for jsonParsed transactions
"""

import struct
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.clients.raydium_amm import MARKET_STATE_V3_SIZE, derive_vault_signer
from mirrorbot.clients.rpc_client import AccountInfo
from mirrorbot.core.config import ConfigurationManager, TradingConfig
from mirrorbot.core.constants import (
    JUPITER_AGGREGATOR_V6,
    NATIVE_MINT,
    RAYDIUM_LIQUIDITY_POOL_V4,
    RAYDIUM_POOL_ACCOUNT_SIZE,
)
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.metrics import get_metrics
from mirrorbot.core.models import (
    Dex,
    ExecutionResult,
    Position,
    QuoteResult,
    SwapEvent,
    SwapType,
    TokenInfo,
    TokenLeg,
)
from mirrorbot.core.position_ledger import PositionLedger
from mirrorbot.utils.audit_log import AuditLog


TARGET_WALLET = "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
TOKEN_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
OTHER_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
POOL_ADDRESS = "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2"


# =============================================================================
# FAKES
# =============================================================================

class FakeRPC:
    """In-memory stand-in for SolanaRPCClient"""

    def __init__(self):
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.accounts: Dict[str, AccountInfo] = {}
        self.parsed_accounts: Dict[str, Dict[str, Any]] = {}
        self.token_balances: Dict[str, int] = {}
        self.calls: List[str] = []
        self.fail_methods: set = set()

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self.fail_methods:
            raise ExternalCallError(f"{method} unavailable")

    async def get_transaction(self, signature):
        self._record("getTransaction")
        return self.transactions.get(signature)

    async def get_account_info(self, address):
        self._record("getAccountInfo")
        return self.accounts.get(address)

    async def get_parsed_account(self, address):
        self._record("getParsedAccount")
        return self.parsed_accounts.get(address)

    async def get_multiple_accounts(self, addresses):
        self._record("getMultipleAccounts")
        return [self.accounts.get(address) for address in addresses]

    async def get_token_account_balance(self, address):
        self._record("getTokenAccountBalance")
        if address not in self.token_balances:
            raise ExternalCallError(f"No token balance for {address}")
        return self.token_balances[address]

    async def get_latest_blockhash(self):
        self._record("getLatestBlockhash")
        return Hash.new_unique()


class FakeRegistry:
    """TokenRegistry stand-in keyed by mint"""

    def __init__(self, tokens: Optional[Dict[str, TokenInfo]] = None):
        self.tokens = {NATIVE_MINT: TokenInfo("Solana", "SOL", NATIVE_MINT, 9)}
        self.tokens.update(tokens or {})

    async def resolve(self, mint):
        if mint not in self.tokens:
            raise ExternalCallError(f"{mint} is not a readable mint account")
        return self.tokens[mint]


class FakeAdapter(ProtocolAdapter):
    """
    Scriptable adapter

    classify() returns `fragment`, execute() records its arguments and returns
    `execute_result` (or raises `execute_error` when set), exit_value() reads
    `exit_values[mint]` (an int or an exception to raise).
    """

    def __init__(self, dex: Dex):
        super().__init__(rpc_client=None, submitter=None, keypair=Keypair())
        self.dex = dex
        self.program_id = JUPITER_AGGREGATOR_V6 if dex == Dex.JUPITER else RAYDIUM_LIQUIDITY_POOL_V4
        self.fragment = None
        self.classify_error: Optional[Exception] = None
        self.classify_calls = 0
        self.execute_calls: List[tuple] = []
        self.execute_result = ExecutionResult(success=True, signature="own-signature")
        self.execute_error: Optional[Exception] = None
        self.received = Decimal("1000")
        self.proceeds = Decimal("0.02")
        self.measure_error: Optional[Exception] = None
        self.fee = Decimal("0.000005")
        self.exit_values: Dict[str, Any] = {}

    async def classify(self, transaction, wallet):
        self.classify_calls += 1
        if self.classify_error is not None:
            raise self.classify_error
        return self.fragment

    async def quote(self, mint_in, mint_out, amount_in, slippage_bps, pool_address=None):
        return QuoteResult(in_amount=amount_in, out_amount=self.exit_values.get(mint_in, 0))

    async def execute(self, mint_in, mint_out, amount_in, pool_address=None):
        self.execute_calls.append((mint_in, mint_out, amount_in, pool_address))
        if self.execute_error is not None:
            raise self.execute_error
        return self.execute_result

    async def measure_received(self, signature, mint_in, mint_out, decimals):
        if self.measure_error is not None:
            raise self.measure_error
        return self.proceeds if mint_out == NATIVE_MINT else self.received

    async def exit_value(self, position, slippage_bps):
        value = self.exit_values.get(position.mint, 0)
        if isinstance(value, Exception):
            raise value
        return value

    async def fee_paid(self, signature):
        return self.fee


# =============================================================================
# TRANSACTION BUILDERS
# =============================================================================

def _token_balance(index: int, mint: str, owner: str, amount, decimals: int = 6) -> Dict[str, Any]:
    amount = Decimal(str(amount))
    raw = int(amount * (Decimal(10) ** decimals))
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {
            "amount": str(raw),
            "decimals": decimals,
            "uiAmountString": str(amount),
        },
    }


def _transaction(account_keys=(), instructions=(), inner=(), pre=(), post=(), fee=5000, err=None) -> Dict[str, Any]:
    return {
        "slot": 1,
        "transaction": {
            "signatures": ["sig"],
            "message": {
                "accountKeys": [{"pubkey": key, "signer": False, "writable": True} for key in account_keys],
                "instructions": list(instructions),
            },
        },
        "meta": {
            "err": err,
            "fee": fee,
            "innerInstructions": list(inner),
            "preTokenBalances": list(pre),
            "postTokenBalances": list(post),
        },
    }


def _pool_account_data(base_mint: Pubkey, quote_mint: Pubkey, base_vault: Pubkey, quote_vault: Pubkey,
                       market_id: Pubkey, market_program: Pubkey, base_decimals: int = 9,
                       quote_decimals: int = 6) -> bytes:
    data = bytearray(RAYDIUM_POOL_ACCOUNT_SIZE)
    struct.pack_into("<QQ", data, 32, base_decimals, quote_decimals)
    for offset, key in (
        (336, base_vault),
        (368, quote_vault),
        (400, base_mint),
        (432, quote_mint),
        (464, Pubkey.new_unique()),
        (496, Pubkey.new_unique()),
        (528, market_id),
        (560, market_program),
        (592, Pubkey.new_unique()),
    ):
        data[offset:offset + 32] = bytes(key)
    return bytes(data)


@pytest.fixture
def token_balance():
    """Builder for one pre/post token balance entry"""
    return _token_balance


@pytest.fixture
def make_transaction():
    """Builder for a jsonParsed getTransaction result"""
    return _transaction


@pytest.fixture
def pool_account_data():
    """Builder for a 752-byte AMM v4 pool account"""
    return _pool_account_data


# =============================================================================
# DOMAIN FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_metrics():
    """Fresh global metrics for every test"""
    get_metrics().reset()
    yield
    get_metrics().reset()


@pytest.fixture
def target_wallet() -> str:
    return TARGET_WALLET


@pytest.fixture
def token_mint() -> str:
    return TOKEN_MINT


@pytest.fixture
def trading_config() -> TradingConfig:
    """0.01 SOL trades, 0.1 SOL minimum, take profit at 1.25x"""
    return TradingConfig(
        trade_amount_lamports=10_000_000,
        min_trade_lamports=100_000_000,
        slippage_bps=500,
        profit_target_multiple=1.25,
        exit_poll_interval_s=0.01,
    )


@pytest.fixture
def config_dict() -> Dict[str, Any]:
    """Valid raw configuration, modified per test"""
    return {
        "rpc": {
            "http_url": "https://api.devnet.solana.com",
            "ws_url": "wss://api.devnet.solana.com",
        },
        "wallet": {
            "private_key": "test-key",
            "target_wallet": TARGET_WALLET,
        },
        "trading": {
            "trade_amount_lamports": 10_000_000,
            "min_trade_lamports": 100_000_000,
            "exit_poll_interval_s": 0.01,
        },
        "logging": {"level": "DEBUG", "format": "json"},
        "audit": {"enabled": True},
    }


@pytest.fixture
def bot_config(config_dict):
    return ConfigurationManager.parse(config_dict)


@pytest.fixture
def ledger() -> PositionLedger:
    return PositionLedger()


@pytest.fixture
def audit() -> AuditLog:
    """Audit log that keeps rows in memory only"""
    return AuditLog(path=None)


@pytest.fixture
def fake_rpc() -> FakeRPC:
    return FakeRPC()


@pytest.fixture
def jupiter_adapter() -> FakeAdapter:
    return FakeAdapter(Dex.JUPITER)


@pytest.fixture
def raydium_adapter() -> FakeAdapter:
    return FakeAdapter(Dex.RAYDIUM)


@pytest.fixture
def make_event():
    """Builder for classified SwapEvents"""
    def _make(swap_type: SwapType, native_amount="2.0", token_amount="500", mint: str = TOKEN_MINT,
              dex: Dex = Dex.JUPITER, pool_address: Optional[str] = None, signature: str = "target-signature"):
        native = TokenLeg(NATIVE_MINT, Decimal(native_amount), "SOL", 9)
        token = TokenLeg(mint, Decimal(token_amount), "TKN", 6)
        if swap_type == SwapType.BUY:
            from_leg, to_leg = native, token
        elif swap_type == SwapType.SELL:
            from_leg, to_leg = token, native
        else:
            from_leg, to_leg = token, TokenLeg(OTHER_MINT, Decimal(token_amount), "OTH", 6)
        return SwapEvent(
            signature=signature,
            source_wallet=TARGET_WALLET,
            dex=dex,
            swap_type=swap_type,
            from_leg=from_leg,
            to_leg=to_leg,
            pool_address=pool_address,
        )
    return _make


@pytest.fixture
def make_position():
    def _make(mint: str = TOKEN_MINT, amount="1000", dex: Dex = Dex.JUPITER, pool_address=None, fee="0"):
        return Position(
            mint=mint,
            amount=Decimal(amount),
            decimals=6,
            symbol="TKN",
            dex=dex,
            pool_address=pool_address,
            fee=Decimal(fee),
        )
    return _make


def _market_account_data(market_id: Pubkey, market_program: Pubkey) -> bytes:
    """OpenBook market account with a nonce that yields a valid vault signer"""
    for nonce in range(256):
        try:
            derive_vault_signer(market_id, nonce, market_program)
        except Exception:
            continue
        data = bytearray(MARKET_STATE_V3_SIZE)
        struct.pack_into("<Q", data, 45, nonce)
        for offset in (53, 85, 117, 165, 253, 285, 317):
            data[offset:offset + 32] = bytes(Pubkey.new_unique())
        return bytes(data)
    raise RuntimeError("no valid vault signer nonce")


@pytest.fixture
def market_account_data():
    """Builder for an OpenBook MARKET_STATE_V3 account"""
    return _market_account_data
