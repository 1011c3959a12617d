"""
Position Ledger
Open mirrored positions keyed by mint, mutated under a single lock
"""

import asyncio
import dataclasses
from typing import Dict, List, Optional, Set

from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import get_metrics
from mirrorbot.core.models import Position


logger = get_logger(__name__)
metrics = get_metrics()


class PositionLedger:
    """
    In-memory ledger with single-writer semantics

    The event-driven mirror path and the exit sweep both touch the ledger. Every
    read and write happens under one asyncio.Lock, and the lock is never held
    across an RPC or swap call: callers take a copy, do the external work, then
    come back to apply the result.

    A sell is two-phase. claim_for_sale() flips the position's sold flag so the
    other path cannot start a second sell of the same mint; close() removes it
    after a confirmed sale, unclaim() puts it back after a failed one.

    Usage:
        ledger = PositionLedger()
        if await ledger.reserve(mint):
            ...buy...
            await ledger.open(position)      # or ledger.release(mint) on failure

        position = await ledger.claim_for_sale(mint)
        if position:
            ...sell...
            await ledger.close(mint)         # or ledger.unclaim(mint) on failure
    """

    def __init__(self):
        self._positions: Dict[str, Position] = {}
        self._pending_buys: Set[str] = set()
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(position: Position) -> Position:
        return dataclasses.replace(position)

    async def get(self, mint: str) -> Optional[Position]:
        async with self._lock:
            position = self._positions.get(mint)
            return self._copy(position) if position else None

    async def contains(self, mint: str) -> bool:
        async with self._lock:
            return mint in self._positions

    async def reserve(self, mint: str) -> bool:
        """
        Mark a buy for `mint` as in flight

        Returns:
            False if the mint is already held or another buy is in flight
        """
        async with self._lock:
            if mint in self._positions or mint in self._pending_buys:
                return False
            self._pending_buys.add(mint)
            return True

    async def release(self, mint: str) -> None:
        """Drop a reservation after a failed buy"""
        async with self._lock:
            self._pending_buys.discard(mint)

    async def open(self, position: Position) -> bool:
        """
        Insert a position after a completed buy, clearing its reservation

        Returns:
            False if a position for the mint already exists
        """
        async with self._lock:
            self._pending_buys.discard(position.mint)
            if position.mint in self._positions:
                logger.warning("position_already_open", mint=position.mint)
                return False
            self._positions[position.mint] = self._copy(position)
            metrics.set_gauge("open_positions", len(self._positions))

        logger.info(
            "position_opened",
            mint=position.mint,
            symbol=position.symbol,
            amount=str(position.amount),
            dex=position.dex.value
        )
        return True

    async def claim_for_sale(self, mint: str) -> Optional[Position]:
        """
        Mark the position as being sold

        Returns:
            A copy of the position, or None when absent or already claimed
        """
        async with self._lock:
            position = self._positions.get(mint)
            if position is None or position.sold:
                return None
            position.sold = True
            return self._copy(position)

    async def unclaim(self, mint: str) -> None:
        """Return a claimed position to the open pool after a failed sell"""
        async with self._lock:
            position = self._positions.get(mint)
            if position is not None:
                position.sold = False

    async def close(self, mint: str) -> Optional[Position]:
        """Remove the position after a confirmed sale"""
        async with self._lock:
            position = self._positions.pop(mint, None)
            metrics.set_gauge("open_positions", len(self._positions))

        if position is not None:
            logger.info("position_closed", mint=mint, symbol=position.symbol)
        return position

    async def snapshot(self) -> List[Position]:
        """Copies of every position not currently being sold"""
        async with self._lock:
            return [self._copy(p) for p in self._positions.values() if not p.sold]

    def __len__(self) -> int:
        return len(self._positions)
