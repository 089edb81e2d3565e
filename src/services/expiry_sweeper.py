"""
Expiry Sweeper - sole writer of deadline-based cancellations.

Each pass collects pending trades whose response deadline has passed and
claims them one by one with a conditional UPDATE. A trade claimed by a
concurrent sweeper, or accepted in the meantime, simply matches no row.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, get_settings
from src.core.logging_service import (
    get_logger,
    log_system_event,
    log_trade_event,
    trade_log_context,
)
from src.db.crud.trade import TradeCRUD
from src.db.types import utcnow
from src.models.enums import TradeEventType
from src.models.trade import Trade
from src.services.item_lock_manager import ItemLockManager
from src.services.listing_gateway import SqlListingGateway
from src.services.notification_dispatcher import NotificationDispatcher


logger = get_logger(__name__)

EXPIRY_REASON = "Response deadline passed"


class ExpirySweeper:
    """
    Runs sweep_once periodically on a background task.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        lock_manager: ItemLockManager | None = None,
        dispatcher: NotificationDispatcher | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if session_factory is None:
            from src.db.database import async_session_factory
            session_factory = async_session_factory
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.lock_manager = lock_manager or ItemLockManager(SqlListingGateway())
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.clock = clock
        self._interval = settings.sweeper_interval_seconds
        self._batch_size = settings.sweeper_batch_size
        self._task: asyncio.Task | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def sweep_once(self, now: datetime | None = None) -> int:
        """
        One pass over elapsed pending trades.

        Returns:
            Number of trades this sweeper cancelled
        """
        now = now or self.clock()
        async with self.session_factory() as db:
            candidates = await TradeCRUD.find_expired_ids(db, now, self._batch_size)

        expired = 0
        for trade_id in candidates:
            try:
                trade = await self._expire(trade_id, now)
            except Exception as e:
                logger.error(
                    f"Failed to expire trade: {type(e).__name__}: {e}",
                    trade_id=str(trade_id),
                )
                continue
            if trade is not None:
                expired += 1

        if candidates:
            log_system_event(
                "sweep_completed",
                "expiry_sweeper",
                candidates=len(candidates),
                expired=expired,
            )
        return expired

    async def _expire(self, trade_id: uuid.UUID, now: datetime) -> Trade | None:
        """
        Claims and cancels one trade. Returns None when the claim matched
        no row (already handled elsewhere, or no longer pending).
        """
        with trade_log_context(trade_id):
            async with self.session_factory() as db:
                async with db.begin():
                    claimed = await TradeCRUD.claim_expired(db, trade_id, now, EXPIRY_REASON)
                    if claimed != 1:
                        logger.debug("Trade already claimed or no longer pending")
                        return None
                    trade = await TradeCRUD.get_or_404(db, trade_id)
                    released = await self.lock_manager.release_all(db, trade_id)

            log_trade_event(
                TradeEventType.EXPIRED.value,
                trade,
                released_listings=len(released),
            )
            self.dispatcher.dispatch(
                TradeEventType.EXPIRED,
                trade.id,
                trade.participant_ids(),
                {"trade_number": trade.trade_number, "status": trade.status},
            )
        return trade

    async def start(self) -> None:
        """Start the background sweep task."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("Expiry sweeper started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the background task."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Expiry sweeper stopped")

    async def _run(self) -> None:
        """Main loop for periodic sweeps."""
        while self._running:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Expiry sweep error: {e}")

            await asyncio.sleep(self._interval)
