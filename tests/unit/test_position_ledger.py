"""
Unit tests for PositionLedger
Tests reservation, two-phase sale, copies and concurrent access
"""

import asyncio
from decimal import Decimal

import pytest

from mirrorbot.core.metrics import get_metrics


# =============================================================================
# OPENING
# =============================================================================

@pytest.mark.asyncio
async def test_open_and_get(ledger, make_position, token_mint):
    assert await ledger.open(make_position())

    position = await ledger.get(token_mint)
    assert position is not None
    assert position.amount == Decimal("1000")
    assert await ledger.contains(token_mint)
    assert len(ledger) == 1
    assert get_metrics().get_gauge("open_positions") == 1


@pytest.mark.asyncio
async def test_open_twice_keeps_one_position(ledger, make_position, token_mint):
    assert await ledger.open(make_position(amount="1000"))
    assert not await ledger.open(make_position(amount="5"))

    assert len(ledger) == 1
    assert (await ledger.get(token_mint)).amount == Decimal("1000")


@pytest.mark.asyncio
async def test_get_returns_copy(ledger, make_position, token_mint):
    await ledger.open(make_position())

    copy = await ledger.get(token_mint)
    copy.amount = Decimal(0)

    assert (await ledger.get(token_mint)).amount == Decimal("1000")


# =============================================================================
# RESERVATION
# =============================================================================

@pytest.mark.asyncio
async def test_reserve_blocks_second_buy(ledger, token_mint):
    assert await ledger.reserve(token_mint)
    assert not await ledger.reserve(token_mint)

    await ledger.release(token_mint)
    assert await ledger.reserve(token_mint)


@pytest.mark.asyncio
async def test_reserve_fails_when_holding(ledger, make_position, token_mint):
    await ledger.open(make_position())
    assert not await ledger.reserve(token_mint)


@pytest.mark.asyncio
async def test_open_clears_reservation(ledger, make_position, token_mint):
    await ledger.reserve(token_mint)
    await ledger.open(make_position())
    await ledger.close(token_mint)

    assert await ledger.reserve(token_mint)


@pytest.mark.asyncio
async def test_concurrent_reserve_only_one_wins(ledger, token_mint):
    results = await asyncio.gather(*(ledger.reserve(token_mint) for _ in range(10)))
    assert results.count(True) == 1


# =============================================================================
# SALE
# =============================================================================

@pytest.mark.asyncio
async def test_claim_for_sale_is_exclusive(ledger, make_position, token_mint):
    await ledger.open(make_position())

    first = await ledger.claim_for_sale(token_mint)
    second = await ledger.claim_for_sale(token_mint)

    assert first is not None and first.sold
    assert second is None


@pytest.mark.asyncio
async def test_unclaim_restores_position(ledger, make_position, token_mint):
    await ledger.open(make_position())
    await ledger.claim_for_sale(token_mint)
    assert await ledger.snapshot() == []

    await ledger.unclaim(token_mint)

    snapshot = await ledger.snapshot()
    assert len(snapshot) == 1
    assert not snapshot[0].sold
    assert snapshot[0].amount == Decimal("1000")


@pytest.mark.asyncio
async def test_close_removes_position(ledger, make_position, token_mint):
    await ledger.open(make_position())
    await ledger.claim_for_sale(token_mint)

    closed = await ledger.close(token_mint)

    assert closed is not None
    assert len(ledger) == 0
    assert await ledger.get(token_mint) is None
    assert get_metrics().get_gauge("open_positions") == 0


@pytest.mark.asyncio
async def test_claim_missing_mint_returns_none(ledger, token_mint):
    assert await ledger.claim_for_sale(token_mint) is None
    assert await ledger.close(token_mint) is None


@pytest.mark.asyncio
async def test_snapshot_excludes_claimed(ledger, make_position, token_mint):
    await ledger.open(make_position())
    await ledger.open(make_position(mint="Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"))
    await ledger.claim_for_sale(token_mint)

    snapshot = await ledger.snapshot()

    assert [p.mint for p in snapshot] == ["Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"]


def test_raw_amount_rounds_down(make_position):
    position = make_position(amount="1.23456789")
    assert position.raw_amount == 1_234_567
