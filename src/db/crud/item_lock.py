"""
CRUD operations for the item lock table.
Only the item lock manager calls these. Statements are Core-level so no
ItemLock instances linger in the session's identity map between calls.
"""

import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, insert, update, delete

from src.models.item_lock import ItemLock


class ItemLockCRUD:
    """Database operations for ItemLock rows."""

    @staticmethod
    async def get_many(db: AsyncSession, listing_ids: list[uuid.UUID]) -> dict[uuid.UUID, uuid.UUID]:
        """Current lock holders for the given listings: listing_id -> trade_id."""
        if not listing_ids:
            return {}
        result = await db.execute(
            select(ItemLock.listing_id, ItemLock.trade_id)
            .where(ItemLock.listing_id.in_(listing_ids))
        )
        return {row.listing_id: row.trade_id for row in result}

    @staticmethod
    async def get_for_trade(db: AsyncSession, trade_id: uuid.UUID) -> list[uuid.UUID]:
        """Listing ids locked by a trade."""
        result = await db.execute(
            select(ItemLock.listing_id).where(ItemLock.trade_id == trade_id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def insert(
        db: AsyncSession,
        listing_ids: list[uuid.UUID],
        trade_id: uuid.UUID,
        locked_at: datetime
    ) -> None:
        """
        Inserts lock rows. A listing already locked violates the primary
        key and raises IntegrityError.
        """
        if not listing_ids:
            return
        await db.execute(
            insert(ItemLock),
            [
                {"listing_id": listing_id, "trade_id": trade_id, "locked_at": locked_at}
                for listing_id in listing_ids
            ]
        )

    @staticmethod
    async def delete_for_trade(
        db: AsyncSession,
        listing_ids: list[uuid.UUID],
        trade_id: uuid.UUID
    ) -> int:
        """Deletes the given locks only where they are held by trade_id."""
        if not listing_ids:
            return 0
        result = await db.execute(
            delete(ItemLock)
            .where(
                ItemLock.listing_id.in_(listing_ids),
                ItemLock.trade_id == trade_id
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    @staticmethod
    async def reassign(
        db: AsyncSession,
        listing_ids: list[uuid.UUID],
        from_trade_id: uuid.UUID,
        to_trade_id: uuid.UUID,
        locked_at: datetime
    ) -> int:
        """Moves locks held by one trade to another; returns rows moved."""
        if not listing_ids:
            return 0
        result = await db.execute(
            update(ItemLock)
            .where(
                ItemLock.listing_id.in_(listing_ids),
                ItemLock.trade_id == from_trade_id
            )
            .values(trade_id=to_trade_id, locked_at=locked_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
