"""
Shared fixtures: a file-backed SQLite database per test, a controllable
clock, a recording notification publisher and a wired trade engine.
"""

import os

# Settings are read at import time by src.db.database
os.environ.setdefault("SECRET_KEY", "k7Qx2Lp9Vd4Rt8Wm3Nc6Hb1Zf5Yg0JaE4uT")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SWEEPER_ENABLED", "false")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from src.config import get_settings
from src.db.database import create_session_factory, init_db
from src.models.enums import ListingStatus
from src.models.listing import Listing
from src.services.expiry_sweeper import ExpirySweeper
from src.services.notification_dispatcher import NotificationDispatcher
from src.services.trade_engine import TradeEngine


class FrozenClock:
    """Clock returning a fixed instant until advanced."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingPublisher:
    """Notification publisher that keeps every event in memory."""

    def __init__(self):
        self.events: list[tuple] = []

    async def publish(self, event_type, trade_id, recipient_ids, payload=None):
        self.events.append((event_type, trade_id, list(recipient_ids)))

    def types(self) -> list[str]:
        return [event[0].value for event in self.events]


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'trades.db'}",
        poolclass=NullPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def dispatcher(publisher):
    return NotificationDispatcher(publisher)


@pytest.fixture
def trade_engine(session_factory, dispatcher, settings, clock):
    return TradeEngine(
        session_factory,
        dispatcher=dispatcher,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def sweeper(session_factory, trade_engine, dispatcher, settings, clock):
    return ExpirySweeper(
        session_factory,
        lock_manager=trade_engine.lock_manager,
        dispatcher=dispatcher,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def alice():
    return uuid.uuid4()


@pytest.fixture
def bob():
    return uuid.uuid4()


@pytest.fixture
def carol():
    return uuid.uuid4()


@pytest.fixture
def dave():
    return uuid.uuid4()


@pytest.fixture
def make_listing(session_factory):
    """Factory inserting a listing and returning its id."""

    async def _make(
        owner_id: uuid.UUID,
        price: str = "100.00",
        is_tradeable: bool = True,
        status: ListingStatus = ListingStatus.ACTIVE,
        title: str = "Listing",
    ) -> uuid.UUID:
        listing_id = uuid.uuid4()
        async with session_factory() as session:
            async with session.begin():
                session.add(Listing(
                    id=listing_id,
                    owner_id=owner_id,
                    title=title,
                    price=Decimal(price),
                    is_tradeable=is_tradeable,
                    status=status.value,
                ))
        return listing_id

    return _make


@pytest.fixture
def fetch_listing(session_factory):
    async def _fetch(listing_id: uuid.UUID) -> Listing:
        async with session_factory() as session:
            return await session.get(Listing, listing_id)

    return _fetch


@pytest.fixture
def locks_for(session_factory):
    """Returns listing_id -> trade_id for every row in item_locks."""
    from sqlalchemy import select
    from src.models.item_lock import ItemLock

    async def _locks() -> dict[uuid.UUID, uuid.UUID]:
        async with session_factory() as session:
            result = await session.execute(select(ItemLock.listing_id, ItemLock.trade_id))
            return {row.listing_id: row.trade_id for row in result}

    return _locks
