"""
Mirror Engine
Replays the monitored wallet's buys and sells against our own position ledger
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Optional

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.core.config import TradingConfig
from mirrorbot.core.constants import LAMPORTS_PER_SOL, NATIVE_DECIMALS, NATIVE_MINT, lamports_to_sol
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import get_metrics
from mirrorbot.core.models import Dex, Position, SwapEvent, SwapType
from mirrorbot.core.pnl import RealizedProfit, realized_profit
from mirrorbot.core.position_ledger import PositionLedger
from mirrorbot.utils.audit_log import AuditLog


logger = get_logger(__name__)
metrics = get_metrics()


class MirrorOutcome(Enum):
    """What the engine did with one swap event"""
    SKIPPED_MIN_SIZE = "skipped_min_size"
    SKIPPED_CIRCULAR = "skipped_circular"
    SKIPPED_SWAP = "skipped_swap"
    ALREADY_HOLDING = "already_holding"
    NOT_MIRRORED = "not_mirrored"
    BOUGHT = "bought"
    SOLD = "sold"
    FAILED = "failed"


class MirrorEngine:
    """
    Decides and executes our reaction to a classified swap

    Buys open a position sized by the configured trade amount, sells close
    the matching position in full. Liquidation is shared with the exit
    policy evaluator so both paths claim, sell and close the same way.
    """

    def __init__(
        self,
        adapters: Iterable[ProtocolAdapter],
        ledger: PositionLedger,
        config: TradingConfig,
        audit: AuditLog
    ):
        self.adapters: Dict[Dex, ProtocolAdapter] = {adapter.dex: adapter for adapter in adapters}
        self.ledger = ledger
        self.config = config
        self.audit = audit

    async def handle(self, event: SwapEvent) -> MirrorOutcome:
        native_size = event.native_size

        if native_size != 0 and native_size * LAMPORTS_PER_SOL < self.config.min_trade_lamports:
            logger.info(
                "trade_skipped_below_minimum",
                signature=event.signature,
                size_sol=str(native_size),
                min_trade_lamports=self.config.min_trade_lamports
            )
            self._audit(event, "Skipped", event.audit_token, event.audit_amount, "Below minimum trade size")
            metrics.increment_counter("mirror_skipped", labels={"reason": "min_size"})
            return MirrorOutcome.SKIPPED_MIN_SIZE

        if event.is_circular:
            logger.info("trade_skipped_circular", signature=event.signature, mint=event.from_leg.token_address)
            metrics.increment_counter("mirror_skipped", labels={"reason": "circular"})
            return MirrorOutcome.SKIPPED_CIRCULAR

        if event.swap_type == SwapType.BUY:
            return await self._mirror_buy(event)
        if event.swap_type == SwapType.SELL:
            return await self._mirror_sell(event)

        logger.info(
            "token_swap_not_mirrored",
            signature=event.signature,
            from_mint=event.from_leg.token_address,
            to_mint=event.to_leg.token_address
        )
        metrics.increment_counter("mirror_skipped", labels={"reason": "swap"})
        return MirrorOutcome.SKIPPED_SWAP

    async def _mirror_buy(self, event: SwapEvent) -> MirrorOutcome:
        mint = event.target_mint
        adapter = self.adapters.get(event.dex)
        if adapter is None:
            logger.error("no_adapter_for_dex", dex=event.dex.value)
            return MirrorOutcome.FAILED

        if not await self.ledger.reserve(mint):
            logger.info("buy_skipped_already_holding", mint=mint, symbol=event.to_leg.symbol)
            return MirrorOutcome.ALREADY_HOLDING

        try:
            result = await adapter.execute(NATIVE_MINT, mint, self.config.trade_amount_lamports, event.pool_address)
        except Exception as e:
            await self.ledger.release(mint)
            logger.error("mirror_buy_error", mint=mint, dex=event.dex.value, error=str(e), exc_info=True)
            metrics.increment_counter("mirror_buys", labels={"status": "error"})
            raise
        if not result.success:
            await self.ledger.release(mint)
            logger.error("mirror_buy_failed", mint=mint, dex=event.dex.value, error=result.error)
            self._audit(event, "Buy Failed", mint, "", result.error or "Purchase failed")
            metrics.increment_counter("mirror_buys", labels={"status": "failed"})
            return MirrorOutcome.FAILED

        amount = await self._measure_bought(adapter, event, result.signature)
        fee = await self._fee(adapter, result.signature)

        position = Position(
            mint=mint,
            amount=amount,
            decimals=event.to_leg.decimals,
            symbol=event.to_leg.symbol,
            dex=event.dex,
            pool_address=event.pool_address,
            fee=fee,
        )
        await self.ledger.open(position)

        logger.info(
            "mirror_buy_success",
            mint=mint,
            symbol=position.symbol,
            spent_sol=str(lamports_to_sol(self.config.trade_amount_lamports)),
            received=str(amount),
            signature=result.signature
        )
        self._audit(event, "Buy Success", mint, str(amount), "Succeed copying buy.")
        metrics.increment_counter("mirror_buys", labels={"status": "success"})
        return MirrorOutcome.BOUGHT

    async def _measure_bought(self, adapter: ProtocolAdapter, event: SwapEvent, signature: str) -> Decimal:
        try:
            return await adapter.measure_received(signature, NATIVE_MINT, event.target_mint, event.to_leg.decimals)
        except ExternalCallError as e:
            # scale the monitored wallet's fill to our trade size
            estimate = Decimal(0)
            if event.from_leg.amount > 0:
                spent = lamports_to_sol(self.config.trade_amount_lamports)
                estimate = event.to_leg.amount * spent / event.from_leg.amount
            logger.warning(
                "buy_amount_unmeasured",
                signature=signature,
                error=str(e),
                estimated_amount=str(estimate)
            )
            return estimate

    async def _fee(self, adapter: ProtocolAdapter, signature: str) -> Decimal:
        try:
            return await adapter.fee_paid(signature)
        except ExternalCallError as e:
            logger.warning("fee_unavailable", signature=signature, error=str(e))
            return Decimal(0)

    async def _mirror_sell(self, event: SwapEvent) -> MirrorOutcome:
        mint = event.target_mint
        position = await self.ledger.get(mint)
        if position is None:
            logger.info("sell_not_mirrored", mint=mint, symbol=event.from_leg.symbol)
            return MirrorOutcome.NOT_MIRRORED

        dex, pool = event.dex, event.pool_address
        if dex == Dex.RAYDIUM and pool is None:
            dex, pool = position.dex, position.pool_address

        return await self.liquidate(
            mint,
            reason="Succeed copying sell.",
            dex=dex,
            pool_hint=pool,
            wallet=event.source_wallet
        )

    async def liquidate(
        self,
        mint: str,
        reason: str,
        dex: Optional[Dex] = None,
        pool_hint: Optional[str] = None,
        wallet: str = ""
    ) -> MirrorOutcome:
        """
        Sell a whole position and close it on confirmation

        The position is claimed first so the event path and the exit sweep
        can never sell the same mint twice. On failure it is unclaimed and
        left exactly as it was, including when the adapter raises.
        """
        position = await self.ledger.claim_for_sale(mint)
        if position is None:
            logger.debug("liquidation_skipped_unavailable", mint=mint)
            return MirrorOutcome.NOT_MIRRORED

        dex = dex or position.dex
        pool = pool_hint or position.pool_address
        adapter = self.adapters.get(dex)
        if adapter is None:
            await self.ledger.unclaim(mint)
            logger.error("no_adapter_for_dex", dex=dex.value)
            return MirrorOutcome.FAILED

        try:
            result = await adapter.execute(mint, NATIVE_MINT, position.raw_amount, pool)
        except Exception as e:
            await self.ledger.unclaim(mint)
            logger.error("sell_error", mint=mint, dex=dex.value, error=str(e), exc_info=True)
            metrics.increment_counter("mirror_sells", labels={"status": "error"})
            raise
        if not result.success:
            await self.ledger.unclaim(mint)
            logger.error("sell_failed", mint=mint, dex=dex.value, error=result.error)
            self.audit.record("Sell Failed", wallet, dex.value, mint, "", result.error or "Sale failed")
            metrics.increment_counter("mirror_sells", labels={"status": "failed"})
            return MirrorOutcome.FAILED

        profit: Optional[RealizedProfit] = None
        try:
            proceeds = await adapter.measure_received(result.signature, mint, NATIVE_MINT, NATIVE_DECIMALS)
            profit = realized_profit(proceeds, self.config.trade_amount_lamports, position.fee)
        except ExternalCallError as e:
            logger.warning("sell_proceeds_unmeasured", mint=mint, signature=result.signature, error=str(e))

        await self.ledger.close(mint)

        if profit is not None:
            logger.info(
                "sell_success",
                mint=mint,
                symbol=position.symbol,
                signature=result.signature,
                **profit.to_dict()
            )
            amount = str(profit.proceeds_sol)
        else:
            logger.info("sell_success", mint=mint, symbol=position.symbol, signature=result.signature, profit="unknown")
            amount = ""

        self.audit.record("Sell Success", wallet, dex.value, mint, amount, reason)
        metrics.increment_counter("mirror_sells", labels={"status": "success"})
        return MirrorOutcome.SOLD

    def _audit(self, event: SwapEvent, action: str, token: str, amount: str, reason: str) -> None:
        self.audit.record(action, event.source_wallet, event.dex.value, token, amount, reason)
