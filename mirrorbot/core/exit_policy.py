"""
Exit Policy Evaluator
Periodically prices every open position and sells those at the profit target
"""

import asyncio
from typing import List, Optional

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.core.config import TradingConfig
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import LatencyTimer, get_metrics
from mirrorbot.core.mirror_engine import MirrorEngine, MirrorOutcome
from mirrorbot.core.models import Position
from mirrorbot.core.pnl import exit_threshold_lamports
from mirrorbot.core.position_ledger import PositionLedger


logger = get_logger(__name__)
metrics = get_metrics()

AUTO_SELL_REASON = "Auto sell triggered"


class ExitPolicyEvaluator:
    """
    Take-profit loop

    Each cycle works on a snapshot of the ledger, so positions opened or
    claimed mid-cycle are picked up next time. A failed price fetch only
    skips that position for the cycle.
    """

    def __init__(self, engine: MirrorEngine, ledger: PositionLedger, config: TradingConfig, wallet: str = ""):
        self.engine = engine
        self.wallet = wallet
        self.ledger = ledger
        self.config = config
        self.threshold_lamports = exit_threshold_lamports(
            config.trade_amount_lamports,
            config.profit_target_multiple
        )
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None

    async def run(self) -> None:
        self._running = True
        self._stop_event = asyncio.Event()
        logger.info(
            "exit_evaluator_started",
            interval_s=self.config.exit_poll_interval_s,
            threshold_lamports=self.threshold_lamports
        )

        while self._running:
            await self.evaluate_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.exit_poll_interval_s)
            except asyncio.TimeoutError:
                pass

        logger.info("exit_evaluator_stopped")

    def stop(self) -> None:
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def evaluate_once(self) -> List[str]:
        """One sweep over the open positions; returns the mints sold"""
        positions = await self.ledger.snapshot()
        if not positions:
            return []

        with LatencyTimer(metrics, "exit_sweep"):
            results = await asyncio.gather(
                *(self._evaluate(position) for position in positions),
                return_exceptions=True
            )

        sold = []
        for position, result in zip(positions, results):
            if isinstance(result, BaseException):
                logger.error("exit_evaluation_crashed", mint=position.mint, error=str(result))
            elif result:
                sold.append(position.mint)

        metrics.set_gauge("exit_last_sweep_positions", len(positions))
        return sold

    async def _evaluate(self, position: Position) -> bool:
        adapter: Optional[ProtocolAdapter] = self.engine.adapters.get(position.dex)
        if adapter is None:
            logger.error("no_adapter_for_dex", dex=position.dex.value, mint=position.mint)
            return False

        try:
            value = await adapter.exit_value(position, self.config.slippage_bps)
        except ExternalCallError as e:
            logger.warning("exit_value_unavailable", mint=position.mint, error=str(e))
            metrics.increment_counter("exit_value_failures", labels={"dex": position.dex.value})
            return False

        logger.debug(
            "exit_value_checked",
            mint=position.mint,
            symbol=position.symbol,
            value_lamports=value,
            threshold_lamports=self.threshold_lamports
        )

        if value < self.threshold_lamports:
            return False

        logger.info(
            "profit_target_reached",
            mint=position.mint,
            symbol=position.symbol,
            value_lamports=value,
            threshold_lamports=self.threshold_lamports
        )
        outcome = await self.engine.liquidate(position.mint, reason=AUTO_SELL_REASON, wallet=self.wallet)
        return outcome == MirrorOutcome.SOLD
