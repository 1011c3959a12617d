"""
Unit tests for ExitPolicyEvaluator
"""

import asyncio

import pytest

from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.exit_policy import AUTO_SELL_REASON, ExitPolicyEvaluator
from mirrorbot.core.mirror_engine import MirrorEngine
from mirrorbot.core.models import Dex

from tests.conftest import OTHER_MINT, TARGET_WALLET, TOKEN_MINT


@pytest.fixture
def engine(jupiter_adapter, raydium_adapter, ledger, trading_config, audit):
    return MirrorEngine([jupiter_adapter, raydium_adapter], ledger, trading_config, audit)


@pytest.fixture
def evaluator(engine, ledger, trading_config):
    return ExitPolicyEvaluator(engine, ledger, trading_config, TARGET_WALLET)


def test_threshold_from_multiple(evaluator):
    # 0.01 SOL * 1.25
    assert evaluator.threshold_lamports == 12_500_000


@pytest.mark.asyncio
async def test_below_threshold_is_kept(evaluator, ledger, make_position, jupiter_adapter):
    await ledger.open(make_position())
    jupiter_adapter.exit_values[TOKEN_MINT] = 12_499_999

    sold = await evaluator.evaluate_once()

    assert sold == []
    assert len(ledger) == 1
    assert jupiter_adapter.execute_calls == []


@pytest.mark.asyncio
async def test_at_threshold_is_sold(evaluator, ledger, make_position, jupiter_adapter, audit):
    await ledger.open(make_position())
    jupiter_adapter.exit_values[TOKEN_MINT] = 12_500_000

    sold = await evaluator.evaluate_once()

    assert sold == [TOKEN_MINT]
    assert len(ledger) == 0
    assert audit.recent("Sell Success")[0].reason == AUTO_SELL_REASON
    assert audit.recent("Sell Success")[0].wallet == TARGET_WALLET


@pytest.mark.asyncio
async def test_price_failure_skips_only_that_position(evaluator, ledger, make_position, jupiter_adapter,
                                                      raydium_adapter):
    await ledger.open(make_position(mint=TOKEN_MINT))
    await ledger.open(make_position(mint=OTHER_MINT, dex=Dex.RAYDIUM, pool_address="pool-1"))
    jupiter_adapter.exit_values[TOKEN_MINT] = ExternalCallError("quote unavailable")
    raydium_adapter.exit_values[OTHER_MINT] = 20_000_000

    sold = await evaluator.evaluate_once()

    assert sold == [OTHER_MINT]
    assert await ledger.contains(TOKEN_MINT)
    assert not await ledger.contains(OTHER_MINT)


@pytest.mark.asyncio
async def test_empty_ledger(evaluator):
    assert await evaluator.evaluate_once() == []


@pytest.mark.asyncio
async def test_run_until_stopped(evaluator, ledger, make_position, jupiter_adapter):
    await ledger.open(make_position())
    jupiter_adapter.exit_values[TOKEN_MINT] = 1

    task = asyncio.create_task(evaluator.run())
    await asyncio.sleep(0.05)
    jupiter_adapter.exit_values[TOKEN_MINT] = 50_000_000
    await asyncio.sleep(0.05)
    evaluator.stop()
    await asyncio.wait_for(task, timeout=1)

    assert len(ledger) == 0
