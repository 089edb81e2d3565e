"""
CRUD operations for the local listings projection.
"""

import uuid
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from src.models.enums import ListingStatus
from src.models.listing import Listing


class ListingCRUD:
    """Database operations for Listing rows."""

    @staticmethod
    async def get_many(db: AsyncSession, listing_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, Listing]:
        ids = list(listing_ids)
        if not ids:
            return {}
        result = await db.execute(select(Listing).where(Listing.id.in_(ids)))
        return {listing.id: listing for listing in result.scalars().all()}

    @staticmethod
    async def set_status(
        db: AsyncSession,
        listing_ids: list[uuid.UUID],
        status: ListingStatus,
        only_from: ListingStatus | None = None
    ) -> int:
        """
        Updates listing status.
        only_from restricts the update to listings currently in that status.
        """
        if not listing_ids:
            return 0
        stmt = update(Listing).where(Listing.id.in_(listing_ids))
        if only_from is not None:
            stmt = stmt.where(Listing.status == only_from.value)
        result = await db.execute(
            stmt.values(status=status.value).execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    @staticmethod
    async def transfer(
        db: AsyncSession,
        listing_id: uuid.UUID,
        new_owner_id: uuid.UUID
    ) -> int:
        """Hands a listing to its new owner; it leaves the market as sold."""
        result = await db.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(owner_id=new_owner_id, status=ListingStatus.SOLD.value)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount
