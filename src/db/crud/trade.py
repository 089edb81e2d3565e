"""
CRUD operations for Trade and TradeItem models.
Every write runs inside the caller's transaction; nothing here commits.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, or_, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from src.core.exceptions import DuplicateTradeNumberError, NotFoundError, StaleStateError
from src.models.enums import TradeSide, TradeStatus
from src.models.trade import Trade, TradeItem


class TradeCRUD:
    """Database operations for trade revisions."""

    @staticmethod
    async def create(
        db: AsyncSession,
        trade_number: str,
        initiator_id: uuid.UUID,
        receiver_id: uuid.UUID,
        items: list[tuple[uuid.UUID, TradeSide, Decimal]],
        response_deadline: datetime,
        created_at: datetime,
        **kwargs
    ) -> Trade:
        """
        Creates a pending trade revision together with its items.

        Args:
            db: Database session
            trade_number: Human-readable reference
            initiator_id: Proposing user
            receiver_id: Responding user
            items: (listing_id, side, value_at_trade) tuples in display order
            response_deadline: When the pending revision auto-cancels
            created_at: Creation timestamp
            **kwargs: Additional trade fields (cash terms, chain links, message)
        """
        trade_id = kwargs.pop("id", None) or uuid.uuid4()
        trade = Trade(
            id=trade_id,
            trade_number=trade_number,
            initiator_id=initiator_id,
            receiver_id=receiver_id,
            status=TradeStatus.PENDING.value,
            expired=False,
            response_deadline=response_deadline,
            created_at=created_at,
            updated_at=created_at,
            root_trade_id=kwargs.pop("root_trade_id", None) or trade_id,
            items=[
                TradeItem(
                    listing_id=listing_id,
                    side=side.value,
                    value_at_trade=value,
                    created_order=position,
                )
                for position, (listing_id, side, value) in enumerate(items)
            ],
            **kwargs
        )
        db.add(trade)
        try:
            await db.flush()
        except IntegrityError as e:
            # trade_number is the only unique column a new revision can collide on
            raise DuplicateTradeNumberError(details={"trade_number": trade_number}) from e
        return trade

    @staticmethod
    async def get_by_id(
        db: AsyncSession,
        trade_id: uuid.UUID,
        for_update: bool = False
    ) -> Optional[Trade]:
        """
        Get trade by ID.
        for_update takes a row lock where the backend supports it.
        """
        query = select(Trade).where(Trade.id == trade_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_404(
        db: AsyncSession,
        trade_id: uuid.UUID,
        for_update: bool = False
    ) -> Trade:
        trade = await TradeCRUD.get_by_id(db, trade_id, for_update=for_update)
        if trade is None:
            raise NotFoundError(f"Trade {trade_id} not found")
        return trade

    @staticmethod
    async def list_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        status: TradeStatus | None = None,
        role: TradeSide | None = None,
        limit: int = 50,
        offset: int = 0
    ) -> list[Trade]:
        """
        Trades the user takes part in, newest first.
        role narrows to trades where the user is initiator or receiver.
        """
        query = select(Trade)
        if role is TradeSide.INITIATOR:
            query = query.where(Trade.initiator_id == user_id)
        elif role is TradeSide.RECEIVER:
            query = query.where(Trade.receiver_id == user_id)
        else:
            query = query.where(or_(Trade.initiator_id == user_id, Trade.receiver_id == user_id))

        if status is not None:
            query = query.where(Trade.status == status.value)

        result = await db.execute(
            query.order_by(desc(Trade.created_at)).limit(limit).offset(offset)
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_revisions(db: AsyncSession, root_trade_id: uuid.UUID) -> list[Trade]:
        """All revisions of one negotiation, oldest first."""
        result = await db.execute(
            select(Trade)
            .where(Trade.root_trade_id == root_trade_id)
            .order_by(Trade.revision)
        )
        return list(result.scalars().all())

    @staticmethod
    async def transition(db: AsyncSession, trade: Trade, **values) -> Trade:
        """
        Applies column values to a trade and flushes them.

        The mapper's version column turns the flush into
        UPDATE ... WHERE id = :id AND version = :loaded_version, so losing a
        race surfaces as StaleStateError. A failed flush rolls the session back
        and expires the instance, so its id is read beforehand.
        """
        trade_id = trade.id
        for key, value in values.items():
            setattr(trade, key, value)
        try:
            await db.flush()
        except StaleDataError as e:
            raise StaleStateError(
                details={"trade_id": str(trade_id), "reason": str(e)}
            ) from e
        return trade

    @staticmethod
    async def find_expired_ids(
        db: AsyncSession,
        now: datetime,
        limit: int = 100
    ) -> list[uuid.UUID]:
        """IDs of pending trades whose response deadline has passed."""
        result = await db.execute(
            select(Trade.id)
            .where(
                Trade.status == TradeStatus.PENDING.value,
                Trade.response_deadline < now
            )
            .order_by(Trade.response_deadline)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    async def claim_expired(
        db: AsyncSession,
        trade_id: uuid.UUID,
        now: datetime,
        reason: str
    ) -> int:
        """
        Single-statement claim of one expired pending trade.

        Only a row still pending with an elapsed deadline is moved to
        cancelled, so concurrent sweepers cannot both claim it.

        Returns:
            Number of rows claimed (0 or 1)
        """
        result = await db.execute(
            update(Trade)
            .where(
                Trade.id == trade_id,
                Trade.status == TradeStatus.PENDING.value,
                Trade.response_deadline < now
            )
            .values(
                status=TradeStatus.CANCELLED.value,
                expired=True,
                cancelled_at=now,
                cancel_reason=reason,
                updated_at=now,
                version=Trade.version + 1
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
