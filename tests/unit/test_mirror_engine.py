"""
Unit tests for MirrorEngine
Tests buy/sell mirroring, skip rules, failure rollback and realized profit
"""

import asyncio
import dataclasses
from decimal import Decimal

import pytest

from mirrorbot.core.constants import NATIVE_MINT
from mirrorbot.core.errors import ExternalCallError
from mirrorbot.core.mirror_engine import MirrorEngine, MirrorOutcome
from mirrorbot.core.models import Dex, ExecutionResult, SwapType

from tests.conftest import TOKEN_MINT


@pytest.fixture
def engine(jupiter_adapter, raydium_adapter, ledger, trading_config, audit):
    return MirrorEngine([jupiter_adapter, raydium_adapter], ledger, trading_config, audit)


# =============================================================================
# SKIP RULES
# =============================================================================

@pytest.mark.asyncio
async def test_below_minimum_is_skipped_and_audited(engine, make_event, jupiter_adapter, audit):
    event = make_event(SwapType.BUY, native_amount="0.05")

    outcome = await engine.handle(event)

    assert outcome == MirrorOutcome.SKIPPED_MIN_SIZE
    assert jupiter_adapter.execute_calls == []
    skipped = audit.recent("Skipped")
    assert len(skipped) == 1
    assert skipped[0].reason == "Below minimum trade size"
    assert skipped[0].amount == "0.05"


@pytest.mark.asyncio
async def test_exact_minimum_is_mirrored(engine, make_event):
    outcome = await engine.handle(make_event(SwapType.BUY, native_amount="0.1"))
    assert outcome == MirrorOutcome.BOUGHT


@pytest.mark.asyncio
async def test_circular_swap_never_executes(engine, make_event, jupiter_adapter):
    swap = make_event(SwapType.SWAP)
    event = dataclasses.replace(swap, to_leg=swap.from_leg)

    outcome = await engine.handle(event)

    assert outcome == MirrorOutcome.SKIPPED_CIRCULAR
    assert jupiter_adapter.execute_calls == []


@pytest.mark.asyncio
async def test_token_swap_not_mirrored(engine, make_event, jupiter_adapter, ledger):
    outcome = await engine.handle(make_event(SwapType.SWAP))

    assert outcome == MirrorOutcome.SKIPPED_SWAP
    assert jupiter_adapter.execute_calls == []
    assert len(ledger) == 0


# =============================================================================
# BUYS
# =============================================================================

@pytest.mark.asyncio
async def test_buy_opens_one_position(engine, make_event, jupiter_adapter, ledger, audit):
    outcome = await engine.handle(make_event(SwapType.BUY))

    assert outcome == MirrorOutcome.BOUGHT
    assert jupiter_adapter.execute_calls == [(NATIVE_MINT, TOKEN_MINT, 10_000_000, None)]

    position = await ledger.get(TOKEN_MINT)
    assert position.amount == Decimal("1000")
    assert position.decimals == 6
    assert position.symbol == "TKN"
    assert position.dex == Dex.JUPITER
    assert position.fee == Decimal("0.000005")

    success = audit.recent("Buy Success")
    assert len(success) == 1
    assert success[0].amount == "1000"
    assert success[0].reason == "Succeed copying buy."


@pytest.mark.asyncio
async def test_second_buy_of_held_mint_is_ignored(engine, make_event, jupiter_adapter, ledger):
    await engine.handle(make_event(SwapType.BUY))
    outcome = await engine.handle(make_event(SwapType.BUY, signature="second"))

    assert outcome == MirrorOutcome.ALREADY_HOLDING
    assert len(jupiter_adapter.execute_calls) == 1
    assert len(ledger) == 1


@pytest.mark.asyncio
async def test_concurrent_buys_open_one_position(engine, make_event, jupiter_adapter, ledger):
    outcomes = await asyncio.gather(
        engine.handle(make_event(SwapType.BUY, signature="a")),
        engine.handle(make_event(SwapType.BUY, signature="b")),
    )

    assert sorted(o.value for o in outcomes) == ["already_holding", "bought"]
    assert len(jupiter_adapter.execute_calls) == 1
    assert len(ledger) == 1


@pytest.mark.asyncio
async def test_raydium_buy_keeps_pool(engine, make_event, raydium_adapter, ledger):
    await engine.handle(make_event(SwapType.BUY, dex=Dex.RAYDIUM, pool_address="pool-1"))

    assert raydium_adapter.execute_calls[0][3] == "pool-1"
    assert (await ledger.get(TOKEN_MINT)).pool_address == "pool-1"


@pytest.mark.asyncio
async def test_failed_buy_leaves_no_position(engine, make_event, jupiter_adapter, ledger, audit):
    jupiter_adapter.execute_result = ExecutionResult.failed("slippage exceeded")

    outcome = await engine.handle(make_event(SwapType.BUY))

    assert outcome == MirrorOutcome.FAILED
    assert len(ledger) == 0
    assert audit.recent("Buy Failed")[0].reason == "slippage exceeded"

    # the mint is free to be bought again
    jupiter_adapter.execute_result = ExecutionResult(success=True, signature="retry")
    assert await engine.handle(make_event(SwapType.BUY)) == MirrorOutcome.BOUGHT


@pytest.mark.asyncio
async def test_buy_that_raises_frees_the_mint(engine, make_event, jupiter_adapter, ledger):
    jupiter_adapter.execute_error = RuntimeError("bad account data")

    with pytest.raises(RuntimeError):
        await engine.handle(make_event(SwapType.BUY))

    assert len(ledger) == 0

    jupiter_adapter.execute_error = None
    assert await engine.handle(make_event(SwapType.BUY)) == MirrorOutcome.BOUGHT


@pytest.mark.asyncio
async def test_unmeasured_buy_is_estimated(engine, make_event, jupiter_adapter, ledger):
    jupiter_adapter.measure_error = ExternalCallError("not indexed")

    await engine.handle(make_event(SwapType.BUY, native_amount="2.0", token_amount="500"))

    # 500 tokens for 2 SOL scaled to a 0.01 SOL trade
    assert (await ledger.get(TOKEN_MINT)).amount == Decimal("2.5")


# =============================================================================
# SELLS
# =============================================================================

@pytest.mark.asyncio
async def test_sell_closes_position(engine, make_event, make_position, jupiter_adapter, ledger, audit):
    await ledger.open(make_position(amount="1000"))

    outcome = await engine.handle(make_event(SwapType.SELL))

    assert outcome == MirrorOutcome.SOLD
    assert len(ledger) == 0
    assert jupiter_adapter.execute_calls == [(TOKEN_MINT, NATIVE_MINT, 1_000_000_000, None)]

    sold = audit.recent("Sell Success")
    assert sold[0].amount == "0.02"
    assert sold[0].reason == "Succeed copying sell."


@pytest.mark.asyncio
async def test_sell_without_position_is_not_mirrored(engine, make_event, jupiter_adapter):
    outcome = await engine.handle(make_event(SwapType.SELL))

    assert outcome == MirrorOutcome.NOT_MIRRORED
    assert jupiter_adapter.execute_calls == []


@pytest.mark.asyncio
async def test_failed_sell_keeps_position(engine, make_event, make_position, jupiter_adapter, ledger, audit):
    await ledger.open(make_position(amount="1000"))
    jupiter_adapter.execute_result = ExecutionResult.failed("blockhash expired")

    outcome = await engine.handle(make_event(SwapType.SELL))

    assert outcome == MirrorOutcome.FAILED
    assert len(ledger) == 1
    position = await ledger.get(TOKEN_MINT)
    assert position.amount == Decimal("1000")
    assert not position.sold
    assert audit.recent("Sell Failed")


@pytest.mark.asyncio
async def test_sell_that_raises_keeps_position(engine, make_event, make_position, jupiter_adapter, ledger):
    await ledger.open(make_position(amount="1000"))
    jupiter_adapter.execute_error = RuntimeError("bad account data")

    with pytest.raises(RuntimeError):
        await engine.handle(make_event(SwapType.SELL))

    snapshot = await ledger.snapshot()
    assert [p.mint for p in snapshot] == [TOKEN_MINT]
    assert not snapshot[0].sold

    jupiter_adapter.execute_error = None
    assert await engine.liquidate(TOKEN_MINT, reason="retry") == MirrorOutcome.SOLD
    assert len(ledger) == 0


@pytest.mark.asyncio
async def test_sell_with_unmeasured_proceeds_still_closes(engine, make_event, make_position, jupiter_adapter,
                                                          ledger, audit):
    await ledger.open(make_position())
    jupiter_adapter.measure_error = ExternalCallError("not indexed")

    outcome = await engine.handle(make_event(SwapType.SELL))

    assert outcome == MirrorOutcome.SOLD
    assert len(ledger) == 0
    assert audit.recent("Sell Success")[0].amount == ""


@pytest.mark.asyncio
async def test_raydium_sell_without_pool_uses_position_pool(engine, make_event, make_position, raydium_adapter,
                                                            ledger):
    await ledger.open(make_position(dex=Dex.RAYDIUM, pool_address="pool-1"))

    await engine.handle(make_event(SwapType.SELL, dex=Dex.RAYDIUM))

    assert raydium_adapter.execute_calls[0][3] == "pool-1"


@pytest.mark.asyncio
async def test_sell_routes_through_event_dex(engine, make_event, make_position, jupiter_adapter, raydium_adapter,
                                             ledger):
    await ledger.open(make_position(dex=Dex.RAYDIUM, pool_address="pool-1"))

    await engine.handle(make_event(SwapType.SELL, dex=Dex.JUPITER))

    assert len(jupiter_adapter.execute_calls) == 1
    assert raydium_adapter.execute_calls == []


# =============================================================================
# LIQUIDATION
# =============================================================================

@pytest.mark.asyncio
async def test_liquidate_uses_position_dex(engine, make_position, raydium_adapter, ledger, audit):
    await ledger.open(make_position(dex=Dex.RAYDIUM, pool_address="pool-1"))

    outcome = await engine.liquidate(TOKEN_MINT, reason="Auto sell triggered")

    assert outcome == MirrorOutcome.SOLD
    assert raydium_adapter.execute_calls == [(TOKEN_MINT, NATIVE_MINT, 1_000_000_000, "pool-1")]
    assert audit.recent("Sell Success")[0].reason == "Auto sell triggered"


@pytest.mark.asyncio
async def test_concurrent_liquidations_sell_once(engine, make_position, jupiter_adapter, ledger):
    await ledger.open(make_position())

    outcomes = await asyncio.gather(
        engine.liquidate(TOKEN_MINT, reason="a"),
        engine.liquidate(TOKEN_MINT, reason="b"),
    )

    assert sorted(o.value for o in outcomes) == ["not_mirrored", "sold"]
    assert len(jupiter_adapter.execute_calls) == 1
