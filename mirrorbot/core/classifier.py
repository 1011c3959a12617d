"""
Swap Classifier
Routes a fetched transaction to its protocol adapter and attaches token metadata
"""

from typing import Dict, Iterable, List, Optional

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.clients.token_registry import TokenRegistry
from mirrorbot.core.errors import ClassificationError, ExternalCallError
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import get_metrics
from mirrorbot.core.models import Dex, RawLeg, SwapEvent, TokenLeg
from mirrorbot.core.transaction import ParsedTransaction


logger = get_logger(__name__)
metrics = get_metrics()


class SwapClassifier:
    """
    Turns a monitored wallet's transaction into a SwapEvent

    Adapters are consulted in registration order by detect_dex(). Register
    Jupiter before Raydium: a Jupiter route through a Raydium pool mentions
    both programs and must be treated as a Jupiter swap.
    """

    def __init__(self, adapters: Iterable[ProtocolAdapter], registry: TokenRegistry, wallet: str):
        self._adapters: List[ProtocolAdapter] = list(adapters)
        self._by_dex: Dict[Dex, ProtocolAdapter] = {adapter.dex: adapter for adapter in self._adapters}
        self.registry = registry
        self.wallet = wallet

    def adapter_for(self, dex: Dex) -> Optional[ProtocolAdapter]:
        return self._by_dex.get(dex)

    def detect_dex(self, log_lines: Iterable[str]) -> Optional[Dex]:
        lines = list(log_lines)
        for adapter in self._adapters:
            if adapter.detect(lines):
                return adapter.dex
        return None

    async def classify(self, transaction: ParsedTransaction, signature: str, protocol_hint: Dex) -> SwapEvent:
        """
        Raises:
            ClassificationError: For unknown protocols, non-swap transactions
                or legs whose metadata cannot be resolved
        """
        adapter = self._by_dex.get(protocol_hint)
        if adapter is None:
            raise ClassificationError(f"no adapter registered for {protocol_hint}")

        try:
            fragment = await adapter.classify(transaction, self.wallet)
            from_leg = await self._token_leg(fragment.from_leg)
            to_leg = await self._token_leg(fragment.to_leg)
        except ExternalCallError as e:
            metrics.increment_counter("classification_failures", labels={"dex": protocol_hint.value})
            raise ClassificationError(f"{signature}: {e}") from e
        except ClassificationError:
            metrics.increment_counter("classification_failures", labels={"dex": protocol_hint.value})
            raise

        event = SwapEvent(
            signature=signature,
            source_wallet=self.wallet,
            dex=protocol_hint,
            swap_type=fragment.swap_type,
            from_leg=from_leg,
            to_leg=to_leg,
            pool_address=fragment.pool_address,
        )
        metrics.increment_counter("swaps_classified", labels={"dex": protocol_hint.value})
        logger.info(
            "swap_classified",
            signature=signature,
            dex=protocol_hint.value,
            swap_type=event.swap_type.value,
            from_token=from_leg.symbol,
            from_amount=str(from_leg.amount),
            to_token=to_leg.symbol,
            to_amount=str(to_leg.amount)
        )
        return event

    async def _token_leg(self, leg: RawLeg) -> TokenLeg:
        info = await self.registry.resolve(leg.mint)
        return TokenLeg(
            token_address=leg.mint,
            amount=leg.amount,
            symbol=info.symbol,
            decimals=leg.decimals if leg.decimals is not None else info.decimals,
        )
