"""
Listing gateway: the engine's view of the Listing/Inventory service.
The SQL implementation works on the local listings table inside the
caller's transaction so reservations commit or roll back with the trade.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession

from src.db.crud.listing import ListingCRUD
from src.models.enums import ListingStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ListingSnapshot:
    """Point-in-time view of a listing."""
    id: uuid.UUID
    owner_id: uuid.UUID
    price: Decimal
    is_tradeable: bool
    status: ListingStatus


@runtime_checkable
class ListingGateway(Protocol):
    """
    Interface to the Listing/Inventory collaborator.
    """

    async def get_listings(
        self,
        db: AsyncSession,
        listing_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, ListingSnapshot]:
        """Snapshots of the listings that exist, keyed by id."""
        ...

    async def lock_listing(self, db: AsyncSession, listing_id: uuid.UUID) -> None:
        """Mark a listing reserved for a trade."""
        ...

    async def release_listing(self, db: AsyncSession, listing_id: uuid.UUID) -> None:
        """Return a reserved listing to the market."""
        ...

    async def transfer_ownership(
        self,
        db: AsyncSession,
        listing_id: uuid.UUID,
        new_owner_id: uuid.UUID
    ) -> None:
        """Hand a listing to its new owner once a trade is confirmed."""
        ...


class SqlListingGateway:
    """
    ListingGateway backed by the listings table.
    """

    async def get_listings(
        self,
        db: AsyncSession,
        listing_ids: Iterable[uuid.UUID]
    ) -> dict[uuid.UUID, ListingSnapshot]:
        listings = await ListingCRUD.get_many(db, listing_ids)
        return {
            listing_id: ListingSnapshot(
                id=listing.id,
                owner_id=listing.owner_id,
                price=listing.price,
                is_tradeable=listing.is_tradeable,
                status=ListingStatus(listing.status),
            )
            for listing_id, listing in listings.items()
        }

    async def lock_listing(self, db: AsyncSession, listing_id: uuid.UUID) -> None:
        await ListingCRUD.set_status(db, [listing_id], ListingStatus.RESERVED)

    async def release_listing(self, db: AsyncSession, listing_id: uuid.UUID) -> None:
        # Listings withdrawn or sold meanwhile keep their status
        await ListingCRUD.set_status(
            db,
            [listing_id],
            ListingStatus.ACTIVE,
            only_from=ListingStatus.RESERVED
        )

    async def transfer_ownership(
        self,
        db: AsyncSession,
        listing_id: uuid.UUID,
        new_owner_id: uuid.UUID
    ) -> None:
        updated = await ListingCRUD.transfer(db, listing_id, new_owner_id)
        if not updated:
            logger.warning(f"Ownership transfer found no listing {listing_id}")
