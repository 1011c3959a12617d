"""
Domain types shared by the classifier, the ledger and the mirror engine
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from mirrorbot.core.constants import NATIVE_MINT


class Dex(Enum):
    """Supported swap protocols"""
    JUPITER = "Jupiter"
    RAYDIUM = "Raydium"


class SwapType(Enum):
    """Canonical classification of a swap from the trader's point of view"""
    BUY = "Buy"      # native SOL in, token out
    SELL = "Sell"    # token in, native SOL out
    SWAP = "Swap"    # token to token


def swap_type_for(from_mint: str, to_mint: str) -> SwapType:
    if from_mint == NATIVE_MINT:
        return SwapType.BUY
    if to_mint == NATIVE_MINT:
        return SwapType.SELL
    return SwapType.SWAP


@dataclass(frozen=True)
class TokenLeg:
    """One side of a swap"""
    token_address: str
    amount: Decimal
    symbol: str
    decimals: int


@dataclass(frozen=True)
class SwapEvent:
    """A classified swap made by the monitored wallet"""
    signature: str
    source_wallet: str
    dex: Dex
    swap_type: SwapType
    from_leg: TokenLeg
    to_leg: TokenLeg
    pool_address: Optional[str] = None

    @property
    def is_circular(self) -> bool:
        return self.from_leg.token_address == self.to_leg.token_address

    @property
    def native_size(self) -> Decimal:
        """SOL spent on a buy or received on a sell, zero for token swaps"""
        if self.swap_type == SwapType.BUY:
            return self.from_leg.amount
        if self.swap_type == SwapType.SELL:
            return self.to_leg.amount
        return Decimal(0)

    @property
    def target_mint(self) -> str:
        """The non-native token of a buy or sell"""
        if self.swap_type == SwapType.SELL:
            return self.from_leg.token_address
        return self.to_leg.token_address

    @property
    def audit_token(self) -> str:
        if self.swap_type == SwapType.SWAP:
            return self.from_leg.token_address + self.to_leg.token_address
        return self.target_mint

    @property
    def audit_amount(self) -> str:
        if self.swap_type == SwapType.SWAP:
            return ""
        return str(self.native_size)


@dataclass(frozen=True)
class TradeDelta:
    """
    Balance change of one owner across two mints

    less_* is the mint whose balance went down (amount <= 0),
    more_* the one that went up.
    """
    less_mint: str
    less_amount: Decimal
    more_mint: str
    more_amount: Decimal

    @property
    def swap_type(self) -> SwapType:
        return swap_type_for(self.less_mint, self.more_mint)

    @property
    def is_empty(self) -> bool:
        return self.less_amount == 0 and self.more_amount == 0

    def as_legs(self) -> Tuple[Tuple[str, Decimal], Tuple[str, Decimal]]:
        """((from_mint, amount spent), (to_mint, amount received))"""
        return (self.less_mint, abs(self.less_amount)), (self.more_mint, self.more_amount)


@dataclass(frozen=True)
class RawLeg:
    """A leg before token metadata is attached; decimals may be unknown"""
    mint: str
    amount: Decimal
    decimals: Optional[int] = None


@dataclass(frozen=True)
class SwapFragment:
    """What a protocol adapter can tell from the transaction alone"""
    from_leg: RawLeg
    to_leg: RawLeg
    swap_type: SwapType
    pool_address: Optional[str] = None


@dataclass(frozen=True)
class TransferRecord:
    """An SPL token transfer found in the inner instructions"""
    amount: int
    source: str
    destination: str
    authority: Optional[str]


@dataclass(frozen=True)
class TokenInfo:
    name: str
    symbol: str
    address: str
    decimals: int


@dataclass
class Position:
    """An open mirrored holding, owned by the PositionLedger"""
    mint: str
    amount: Decimal
    decimals: int
    symbol: str
    dex: Dex
    pool_address: Optional[str] = None
    fee: Decimal = Decimal(0)
    sold: bool = False
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def raw_amount(self) -> int:
        """Held amount in base units"""
        scaled = (self.amount * (Decimal(10) ** self.decimals)).to_integral_value(rounding=ROUND_DOWN)
        return int(scaled)


@dataclass
class QuoteResult:
    in_amount: int
    out_amount: int
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "ExecutionResult":
        return cls(success=False, signature=None, error=error)


@dataclass(frozen=True)
class LogNotification:
    """One logsSubscribe push for the monitored wallet"""
    signature: str
    logs: Tuple[str, ...]
    err: Optional[Any] = None

    @classmethod
    def from_rpc(cls, value: Dict[str, Any]) -> "LogNotification":
        logs: List[str] = value.get("logs") or []
        return cls(signature=value.get("signature", ""), logs=tuple(logs), err=value.get("err"))
