"""
Realized profit of a mirrored round trip
Cost basis is the configured SOL trade amount plus any fee booked on the position
"""

from dataclasses import dataclass
from decimal import Decimal

from mirrorbot.core.constants import lamports_to_sol


@dataclass(frozen=True)
class RealizedProfit:
    """Outcome of a closed position, all values in SOL"""
    proceeds_sol: Decimal
    cost_basis_sol: Decimal

    @property
    def profit_sol(self) -> Decimal:
        return self.proceeds_sol - self.cost_basis_sol

    @property
    def profit_pct(self) -> Decimal:
        return profit_percentage(self.proceeds_sol, self.cost_basis_sol)

    @property
    def is_profitable(self) -> bool:
        return self.profit_sol > 0

    def to_dict(self) -> dict:
        return {
            "proceeds_sol": str(self.proceeds_sol),
            "cost_basis_sol": str(self.cost_basis_sol),
            "profit_sol": str(self.profit_sol),
            "profit_pct": str(self.profit_pct),
        }


def cost_basis(trade_amount_lamports: int, fee_sol: Decimal = Decimal(0)) -> Decimal:
    return lamports_to_sol(trade_amount_lamports) + fee_sol


def profit_percentage(proceeds_sol: Decimal, cost_basis_sol: Decimal) -> Decimal:
    """((proceeds - cost) * 100) / cost; zero cost yields zero"""
    if cost_basis_sol == 0:
        return Decimal(0)
    return ((proceeds_sol - cost_basis_sol) * 100) / cost_basis_sol


def realized_profit(proceeds_sol: Decimal, trade_amount_lamports: int, fee_sol: Decimal = Decimal(0)) -> RealizedProfit:
    return RealizedProfit(
        proceeds_sol=proceeds_sol,
        cost_basis_sol=cost_basis(trade_amount_lamports, fee_sol),
    )


def exit_threshold_lamports(trade_amount_lamports: int, profit_target_multiple: float) -> int:
    """Minimum SOL output (lamports) at which an open position is worth selling"""
    return int(Decimal(trade_amount_lamports) * Decimal(str(profit_target_multiple)))
