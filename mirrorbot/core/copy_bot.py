"""
Mirror Bot
Wires the notification stream, classifier, mirror engine and take-profit loop together
"""

import asyncio
from typing import List, Optional, Set

import base58
from solders.keypair import Keypair

from mirrorbot.adapters.base import ProtocolAdapter
from mirrorbot.adapters.jupiter import JupiterAdapter
from mirrorbot.adapters.raydium import RaydiumAdapter
from mirrorbot.clients.jupiter_client import JupiterClient
from mirrorbot.clients.rpc_client import SolanaRPCClient
from mirrorbot.clients.token_registry import TokenRegistry
from mirrorbot.clients.tx_submitter import TransactionSubmitter
from mirrorbot.core.classifier import SwapClassifier
from mirrorbot.core.config import BotConfig
from mirrorbot.core.constants import lamports_to_sol
from mirrorbot.core.errors import ClassificationError, ConfigurationError, ExternalCallError
from mirrorbot.core.exit_policy import ExitPolicyEvaluator
from mirrorbot.core.logger import get_logger
from mirrorbot.core.metrics import get_metrics
from mirrorbot.core.mirror_engine import MirrorEngine, MirrorOutcome
from mirrorbot.core.models import LogNotification
from mirrorbot.core.position_ledger import PositionLedger
from mirrorbot.core.signature_cache import SignatureCache
from mirrorbot.utils.audit_log import AuditLog


logger = get_logger(__name__)
metrics = get_metrics()


def load_keypair(private_key: str) -> Keypair:
    """Operator keypair from a base58 secret key"""
    try:
        return Keypair.from_bytes(base58.b58decode(private_key))
    except ValueError as e:
        raise ConfigurationError(f"wallet.private_key is not a valid base58 keypair: {e}") from e


class MirrorBot:
    """
    Copy-trading bot for one monitored wallet

    Every log notification mentioning the wallet is deduplicated, fetched,
    classified and handed to the mirror engine in its own task. The exit
    evaluator runs alongside on its own interval.

    Usage:
        bot = MirrorBot.from_config(config)
        await bot.start()      # runs until stop()
    """

    def __init__(
        self,
        config: BotConfig,
        rpc_client: SolanaRPCClient,
        classifier: SwapClassifier,
        engine: MirrorEngine,
        evaluator: ExitPolicyEvaluator,
        signature_cache: SignatureCache,
        audit: AuditLog,
        jupiter_client: Optional[JupiterClient] = None
    ):
        self.config = config
        self.rpc_client = rpc_client
        self.classifier = classifier
        self.engine = engine
        self.evaluator = evaluator
        self.signature_cache = signature_cache
        self.audit = audit
        self.jupiter_client = jupiter_client

        self.target_wallet = config.wallet.target_wallet
        self._running = False
        self._tasks: Set[asyncio.Task] = set()
        self._background: List[asyncio.Task] = []

    @classmethod
    def from_config(cls, config: BotConfig) -> "MirrorBot":
        keypair = load_keypair(config.wallet.private_key)

        rpc_client = SolanaRPCClient(config.rpc)
        submitter = TransactionSubmitter(rpc_client, config.transactions)
        jupiter_client = JupiterClient(config.jupiter)

        # Jupiter first: a routed Jupiter swap also mentions the Raydium program
        adapters: List[ProtocolAdapter] = [
            JupiterAdapter(rpc_client, submitter, keypair, jupiter_client, config.trading.slippage_bps),
            RaydiumAdapter(rpc_client, submitter, keypair, config.raydium, config.trading.slippage_bps),
        ]

        audit = AuditLog(config.audit.file, enabled=config.audit.enabled)
        ledger = PositionLedger()
        engine = MirrorEngine(adapters, ledger, config.trading, audit)

        return cls(
            config=config,
            rpc_client=rpc_client,
            classifier=SwapClassifier(adapters, TokenRegistry(rpc_client), config.wallet.target_wallet),
            engine=engine,
            evaluator=ExitPolicyEvaluator(engine, ledger, config.trading, config.wallet.target_wallet),
            signature_cache=SignatureCache.for_window(
                config.trading.signatures_window,
                config.trading.signature_cache_multiplier
            ),
            audit=audit,
            jupiter_client=jupiter_client,
        )

    async def handle_notification(self, notification: LogNotification) -> Optional[MirrorOutcome]:
        """
        Process one notification end to end

        Returns:
            The engine outcome, or None when the notification was dropped
        """
        if notification.err is not None:
            logger.debug("notification_failed_transaction", signature=notification.signature)
            return None

        dex = self.classifier.detect_dex(notification.logs)
        if dex is None:
            return None

        signature = notification.signature
        if self.signature_cache.seen(signature):
            metrics.increment_counter("notifications_duplicate")
            logger.debug("notification_duplicate", signature=signature)
            return None
        # recorded before any await so a concurrent duplicate is dropped above
        self.signature_cache.record(signature)

        try:
            transaction = await self.rpc_client.get_transaction(signature)
            if transaction is None:
                logger.warning("transaction_not_found", signature=signature)
                return None

            event = await self.classifier.classify(transaction, signature, dex)
        except (ClassificationError, ExternalCallError) as e:
            logger.warning("transaction_not_classified", signature=signature, dex=dex.value, error=str(e))
            self.audit.record("Error", self.target_wallet, dex.value, "", "", f"{signature}: {e}")
            return None

        self.audit.record(
            event.swap_type.value,
            self.target_wallet,
            event.dex.value,
            event.audit_token,
            event.audit_amount,
            "Monitored new transaction"
        )

        outcome = await self.engine.handle(event)
        metrics.increment_counter("mirror_outcomes", labels={"outcome": outcome.value})
        return outcome

    async def start(self) -> None:
        self._running = True
        self._print_banner()

        await self.rpc_client.start()
        if self.jupiter_client is not None:
            await self.jupiter_client.start()

        evaluator_task = asyncio.create_task(self.evaluator.run())
        listener_task = asyncio.create_task(self._listen())
        self._background = [evaluator_task, listener_task]

        logger.info("mirror_bot_started", target_wallet=self.target_wallet)
        await asyncio.gather(*self._background, return_exceptions=True)

    async def _listen(self) -> None:
        async for notification in self.rpc_client.subscribe_logs(self.target_wallet):
            if not self._running:
                break
            task = asyncio.create_task(self.handle_notification(notification))
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("notification_task_failed", error=str(task.exception()))

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        logger.info("mirror_bot_stopping", in_flight=len(self._tasks))

        self.evaluator.stop()
        for task in self._background:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self.jupiter_client is not None:
            await self.jupiter_client.stop()
        await self.rpc_client.stop()

        logger.info("mirror_bot_stopped", metrics=metrics.export_metrics()["counters"])

    def _print_banner(self) -> None:
        trading = self.config.trading
        print("=" * 60)
        print("WALLET MIRROR BOT")
        print("=" * 60)
        print(f"Monitoring target wallet: {self.target_wallet}")
        print(f"Minimum trade size: {lamports_to_sol(trading.min_trade_lamports)} SOL")
        print(f"Trade amount: {lamports_to_sol(trading.trade_amount_lamports)} SOL")
        print(f"Take profit at: {trading.profit_target_multiple}x")
        print("=" * 60)
