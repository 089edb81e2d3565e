"""
Tests for the item lock manager against a real SQLite database.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.core.exceptions import ItemUnavailableError
from src.db.crud.trade import TradeCRUD
from src.models.enums import ListingStatus, TradeSide
from src.services.item_lock_manager import ItemLockManager
from src.services.listing_gateway import SqlListingGateway


T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def manager():
    return ItemLockManager(SqlListingGateway())


async def create_trade(session, initiator_id, receiver_id) -> uuid.UUID:
    trade = await TradeCRUD.create(
        session,
        trade_number=f"TRD-T-{uuid.uuid4().hex[:4].upper()}",
        initiator_id=initiator_id,
        receiver_id=receiver_id,
        items=[],
        response_deadline=T0 + timedelta(hours=72),
        created_at=T0,
        cash_amount=Decimal("0"),
    )
    return trade.id


class TestTryLock:

    @pytest.mark.asyncio
    async def test_locks_all_and_reserves_listings(
        self, manager, session_factory, make_listing, fetch_listing, locks_for, alice, bob
    ):
        first = await make_listing(alice)
        second = await make_listing(alice)

        async with session_factory() as session:
            async with session.begin():
                trade_id = await create_trade(session, alice, bob)
                await manager.try_lock(session, [first, second], trade_id, alice)

        locks = await locks_for()
        assert locks == {first: trade_id, second: trade_id}
        assert (await fetch_listing(first)).status == ListingStatus.RESERVED.value

    @pytest.mark.asyncio
    async def test_all_or_nothing(self, manager, session_factory, make_listing, locks_for, alice, bob):
        """One bad listing means no lock is taken."""
        good = await make_listing(alice)
        foreign = await make_listing(bob)

        with pytest.raises(ItemUnavailableError) as exc:
            async with session_factory() as session:
                async with session.begin():
                    trade_id = await create_trade(session, alice, bob)
                    await manager.try_lock(session, [good, foreign], trade_id, alice)

        assert exc.value.details["listings"] == {str(foreign): "not_owned"}
        assert await locks_for() == {}

    @pytest.mark.asyncio
    async def test_conflict_reasons(self, manager, session_factory, make_listing, alice, bob):
        untradeable = await make_listing(alice, is_tradeable=False)
        sold = await make_listing(alice, status=ListingStatus.SOLD)
        missing = uuid.uuid4()

        with pytest.raises(ItemUnavailableError) as exc:
            async with session_factory() as session:
                async with session.begin():
                    trade_id = await create_trade(session, alice, bob)
                    await manager.try_lock(session, [untradeable, sold, missing], trade_id, alice)

        reasons = exc.value.details["listings"]
        assert reasons[str(untradeable)] == "not_tradeable"
        assert reasons[str(sold)] == "status_sold"
        assert reasons[str(missing)] == "not_found"

    @pytest.mark.asyncio
    async def test_listing_locked_by_other_trade(self, manager, session_factory, make_listing, alice, bob, carol):
        listing = await make_listing(alice)

        async with session_factory() as session:
            async with session.begin():
                first_trade = await create_trade(session, alice, bob)
                await manager.try_lock(session, [listing], first_trade, alice)

        with pytest.raises(ItemUnavailableError) as exc:
            async with session_factory() as session:
                async with session.begin():
                    second_trade = await create_trade(session, alice, carol)
                    await manager.try_lock(session, [listing], second_trade, alice)

        assert exc.value.details["listings"][str(listing)] == "locked"

    @pytest.mark.asyncio
    async def test_reusable_from_moves_lock(self, manager, session_factory, make_listing, locks_for, alice, bob):
        listing = await make_listing(alice)

        async with session_factory() as session:
            async with session.begin():
                old_trade = await create_trade(session, alice, bob)
                await manager.try_lock(session, [listing], old_trade, alice)

        async with session_factory() as session:
            async with session.begin():
                new_trade = await create_trade(session, bob, alice)
                await manager.try_lock(session, [listing], new_trade, alice, reusable_from=old_trade)

        assert await locks_for() == {listing: new_trade}


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_only_own_locks(
        self, manager, session_factory, make_listing, fetch_listing, locks_for, alice, bob, carol
    ):
        mine = await make_listing(alice)
        theirs = await make_listing(carol)

        async with session_factory() as session:
            async with session.begin():
                trade_a = await create_trade(session, alice, bob)
                trade_b = await create_trade(session, carol, bob)
                await manager.try_lock(session, [mine], trade_a, alice)
                await manager.try_lock(session, [theirs], trade_b, carol)

        async with session_factory() as session:
            async with session.begin():
                released = await manager.release(session, [mine, theirs], trade_a)

        assert released == [mine]
        assert await locks_for() == {theirs: trade_b}
        assert (await fetch_listing(mine)).status == ListingStatus.ACTIVE.value
        assert (await fetch_listing(theirs)).status == ListingStatus.RESERVED.value

    @pytest.mark.asyncio
    async def test_release_all(self, manager, session_factory, make_listing, locks_for, alice, bob):
        listings = [await make_listing(alice) for _ in range(3)]

        async with session_factory() as session:
            async with session.begin():
                trade_id = await create_trade(session, alice, bob)
                await manager.try_lock(session, listings, trade_id, alice)

        async with session_factory() as session:
            async with session.begin():
                released = await manager.release_all(session, trade_id)

        assert sorted(released) == sorted(listings)
        assert await locks_for() == {}

    @pytest.mark.asyncio
    async def test_transfer_requires_current_holder(self, manager, session_factory, make_listing, alice, bob):
        listing = await make_listing(alice)

        with pytest.raises(ItemUnavailableError):
            async with session_factory() as session:
                async with session.begin():
                    trade_a = await create_trade(session, alice, bob)
                    trade_b = await create_trade(session, bob, alice)
                    await manager.transfer_lock(session, [listing], trade_a, trade_b)
