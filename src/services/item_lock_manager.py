"""
Item Lock Manager - guarantees a listing is committed to at most one
active trade at a time.

Locks are rows in item_locks keyed by listing_id, written in the same
transaction as the trade transition that needs them. Two transactions
racing for the same listing collide on the primary key; the loser gets
ItemUnavailableError and its whole transaction rolls back.
"""

import uuid
from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import ItemUnavailableError
from src.core.logging_service import get_logger
from src.db.crud.item_lock import ItemLockCRUD
from src.db.types import utcnow
from src.models.enums import ListingStatus
from src.services.listing_gateway import ListingGateway

logger = get_logger(__name__)


def _unique(listing_ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
    return list(dict.fromkeys(listing_ids))


class ItemLockManager:
    """
    Only writer of the item_locks table.
    """

    def __init__(self, gateway: ListingGateway):
        self.gateway = gateway

    async def try_lock(
        self,
        db: AsyncSession,
        listing_ids: Iterable[uuid.UUID],
        trade_id: uuid.UUID,
        owner_id: uuid.UUID,
        *,
        reusable_from: uuid.UUID | None = None,
    ) -> None:
        """
        Locks every listing for trade_id, or none of them.

        A listing conflicts when it is missing, not owned by owner_id, not
        tradeable, not active, or locked by a trade other than reusable_from.
        Listings locked by reusable_from (a superseded revision) have their
        lock moved to trade_id instead of a fresh insert.

        Raises:
            ItemUnavailableError: naming each offending listing and why
        """
        ids = _unique(listing_ids)
        if not ids:
            return

        listings = await self.gateway.get_listings(db, ids)
        existing = await ItemLockCRUD.get_many(db, ids)

        conflicts: dict[str, str] = {}
        reused: list[uuid.UUID] = []
        fresh: list[uuid.UUID] = []

        for listing_id in ids:
            listing = listings.get(listing_id)
            holder = existing.get(listing_id)
            held_by_previous = reusable_from is not None and holder == reusable_from

            if listing is None:
                conflicts[str(listing_id)] = "not_found"
            elif listing.owner_id != owner_id:
                conflicts[str(listing_id)] = "not_owned"
            elif not listing.is_tradeable:
                conflicts[str(listing_id)] = "not_tradeable"
            elif holder is not None and not held_by_previous:
                conflicts[str(listing_id)] = "locked"
            elif listing.status is ListingStatus.RESERVED and not held_by_previous:
                conflicts[str(listing_id)] = "reserved"
            elif listing.status not in (ListingStatus.ACTIVE, ListingStatus.RESERVED):
                conflicts[str(listing_id)] = f"status_{listing.status.value}"
            elif held_by_previous:
                reused.append(listing_id)
            else:
                fresh.append(listing_id)

        if conflicts:
            logger.info("Lock refused", trade_id=str(trade_id), conflicts=conflicts)
            raise ItemUnavailableError(details={"listings": conflicts})

        if reused:
            await self.transfer_lock(db, reused, reusable_from, trade_id)

        if fresh:
            try:
                await ItemLockCRUD.insert(db, fresh, trade_id, utcnow())
            except IntegrityError as e:
                # Another transaction locked one of these after our read
                logger.info("Lock race lost", trade_id=str(trade_id), error=str(e.orig))
                raise ItemUnavailableError(
                    details={"listings": {str(i): "locked" for i in fresh}}
                ) from e
            for listing_id in fresh:
                await self.gateway.lock_listing(db, listing_id)

        logger.debug(
            "Listings locked",
            trade_id=str(trade_id),
            locked=len(fresh),
            reused=len(reused),
        )

    async def release(
        self,
        db: AsyncSession,
        listing_ids: Iterable[uuid.UUID],
        trade_id: uuid.UUID,
    ) -> list[uuid.UUID]:
        """
        Releases locks on the given listings held by trade_id.
        Locks held by other trades are left alone.

        Returns:
            Listing ids actually released
        """
        ids = _unique(listing_ids)
        if not ids:
            return []

        held = await ItemLockCRUD.get_many(db, ids)
        released = [i for i in ids if held.get(i) == trade_id]
        if not released:
            return []

        await ItemLockCRUD.delete_for_trade(db, released, trade_id)
        for listing_id in released:
            await self.gateway.release_listing(db, listing_id)
        return released

    async def release_all(self, db: AsyncSession, trade_id: uuid.UUID) -> list[uuid.UUID]:
        """Releases every lock held by trade_id."""
        held = await ItemLockCRUD.get_for_trade(db, trade_id)
        return await self.release(db, held, trade_id)

    async def transfer_lock(
        self,
        db: AsyncSession,
        listing_ids: Iterable[uuid.UUID],
        from_trade_id: uuid.UUID,
        to_trade_id: uuid.UUID,
    ) -> None:
        """
        Moves locks from one trade revision to another.

        Raises:
            ItemUnavailableError: if any listing is not held by from_trade_id
        """
        ids = _unique(listing_ids)
        if not ids:
            return
        moved = await ItemLockCRUD.reassign(db, ids, from_trade_id, to_trade_id, utcnow())
        if moved != len(ids):
            raise ItemUnavailableError(
                "Listings are no longer held by the superseded trade",
                details={"listings": {str(i): "not_held" for i in ids}},
            )
