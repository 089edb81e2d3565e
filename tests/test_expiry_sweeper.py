"""
Tests for the expiry sweeper: deadline boundary, idempotent claims and
lock release.
"""

import asyncio
from datetime import timedelta

import pytest

from src.models.enums import ListingStatus, TradeStatus
from src.services.expiry_sweeper import EXPIRY_REASON


async def propose(trade_engine, make_listing, initiator, receiver, deadline):
    return await trade_engine.propose_trade(
        initiator,
        receiver,
        [await make_listing(initiator)],
        [await make_listing(receiver)],
        deadline=deadline,
    )


class TestSweepOnce:

    @pytest.mark.asyncio
    async def test_carol_trade_expires_after_deadline(
        self, trade_engine, sweeper, make_listing, fetch_listing, locks_for, clock, carol, bob
    ):
        trade = await propose(trade_engine, make_listing, carol, bob, clock() + timedelta(hours=24))
        listing_ids = trade.listing_ids()

        clock.advance(hours=25)
        assert await sweeper.sweep_once() == 1

        expired = await trade_engine.get_trade(trade.id)
        assert expired.trade_status is TradeStatus.CANCELLED
        assert expired.expired is True
        assert expired.cancel_reason == EXPIRY_REASON
        assert expired.cancelled_at == clock()
        assert expired.completed_at is None
        assert await locks_for() == {}
        for listing_id in listing_ids:
            assert (await fetch_listing(listing_id)).status == ListingStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_deadline_boundary(self, trade_engine, sweeper, make_listing, clock, alice, bob, carol, dave):
        sweep_at = clock() + timedelta(hours=2)
        overdue = await propose(trade_engine, make_listing, alice, bob, sweep_at - timedelta(seconds=1))
        fresh = await propose(trade_engine, make_listing, carol, dave, sweep_at + timedelta(hours=1))

        assert await sweeper.sweep_once(sweep_at) == 1

        assert (await trade_engine.get_trade(overdue.id)).trade_status is TradeStatus.CANCELLED
        assert (await trade_engine.get_trade(fresh.id)).trade_status is TradeStatus.PENDING

    @pytest.mark.asyncio
    async def test_deadline_not_yet_elapsed(self, trade_engine, sweeper, make_listing, clock, alice, bob):
        trade = await propose(trade_engine, make_listing, alice, bob, clock() + timedelta(hours=1))

        assert await sweeper.sweep_once(trade.response_deadline) == 0
        assert (await trade_engine.get_trade(trade.id)).trade_status is TradeStatus.PENDING

    @pytest.mark.asyncio
    async def test_second_sweep_is_noop(self, trade_engine, sweeper, make_listing, publisher, dispatcher, clock, alice, bob):
        trade = await propose(trade_engine, make_listing, alice, bob, clock() + timedelta(hours=1))
        later = clock() + timedelta(hours=2)

        assert await sweeper.sweep_once(later) == 1
        assert await sweeper.sweep_once(later) == 0
        assert await sweeper._expire(trade.id, later) is None

        await dispatcher.drain()
        assert publisher.types().count("trade_expired") == 1

        swept = await trade_engine.get_trade(trade.id)
        assert swept.version == trade.version + 1

    @pytest.mark.asyncio
    async def test_accepted_trade_is_never_swept(self, trade_engine, sweeper, make_listing, clock, alice, bob):
        trade = await propose(trade_engine, make_listing, alice, bob, clock() + timedelta(hours=1))
        await trade_engine.accept_trade(trade.id, bob)

        assert await sweeper.sweep_once(clock() + timedelta(days=10)) == 0
        assert (await trade_engine.get_trade(trade.id)).trade_status is TradeStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_concurrent_sweepers_cancel_once(self, trade_engine, sweeper, make_listing, clock, alice, bob):
        trade = await propose(trade_engine, make_listing, alice, bob, clock() + timedelta(hours=1))
        later = clock() + timedelta(hours=2)

        first = await sweeper._expire(trade.id, later)
        second = await sweeper._expire(trade.id, later)

        assert first is not None
        assert first.expired is True
        assert second is None


class TestSweeperLifecycle:

    @pytest.mark.asyncio
    async def test_start_and_stop(self, sweeper):
        assert sweeper.is_running is False

        await sweeper.start()
        assert sweeper.is_running is True
        await asyncio.sleep(0)

        await sweeper.stop()
        assert sweeper.is_running is False

    @pytest.mark.asyncio
    async def test_background_loop_sweeps(self, trade_engine, sweeper, make_listing, clock, alice, bob):
        trade = await propose(trade_engine, make_listing, alice, bob, clock() + timedelta(hours=1))
        clock.advance(hours=2)

        await sweeper.start()
        for _ in range(50):
            if (await trade_engine.get_trade(trade.id)).trade_status is TradeStatus.CANCELLED:
                break
            await asyncio.sleep(0.05)
        await sweeper.stop()

        assert (await trade_engine.get_trade(trade.id)).expired is True
