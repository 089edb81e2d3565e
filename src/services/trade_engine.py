"""
Trade Engine - entry point for every trade operation.

Each call runs in one database transaction: guards, lock changes, the
status transition and any side records commit together or not at all.
Events are dispatched and logged only after the commit succeeded.
"""

import secrets
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Iterable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, get_settings
from src.core.exceptions import (
    DuplicateTradeNumberError,
    InvalidParticipantError,
    ItemUnavailableError,
    ValidationError,
)
from src.core.logging_service import get_logger, log_trade_event, trade_log_context
from src.db.crud.cash_intent import CashIntentCRUD
from src.db.crud.trade import TradeCRUD
from src.db.types import utcnow
from src.models.enums import CashIntentStatus, TradeEventType, TradeSide, TradeStatus
from src.models.trade import Trade
from src.services import trade_state_machine as machine
from src.services.item_lock_manager import ItemLockManager
from src.services.listing_gateway import ListingGateway, SqlListingGateway
from src.services.notification_dispatcher import NotificationDispatcher
from src.services.valuation import BalanceSummary, commission_for, summarize, to_money


logger = get_logger(__name__)

T = TypeVar("T")

BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# A number collision gets one retry with a fresh random suffix
TRADE_NUMBER_ATTEMPTS = 2


def _to_base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(BASE36[remainder])
        if value == 0:
            break
    return "".join(reversed(digits))


def generate_trade_number(now: datetime) -> str:
    """TRD-<base36 epoch millis>-<4 random base36 chars>."""
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(BASE36) for _ in range(4))
    return f"TRD-{_to_base36(millis)}-{suffix}"


class TradeEngine:
    """
    Orchestrates proposals, counter-offers and fulfillment.

    Collaborators are injectable so tests can supply their own session
    factory, clock and notification publisher.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        gateway: ListingGateway | None = None,
        dispatcher: NotificationDispatcher | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if session_factory is None:
            from src.db.database import async_session_factory
            session_factory = async_session_factory
        self.session_factory = session_factory
        self.gateway = gateway or SqlListingGateway()
        self.lock_manager = ItemLockManager(self.gateway)
        self.dispatcher = dispatcher or NotificationDispatcher()
        self.settings = settings or get_settings()
        self.clock = clock

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def _in_numbered_transaction(
        self,
        operation: Callable[[AsyncSession, str], Awaitable[T]],
        now: datetime,
    ) -> T:
        """
        Runs operation(db, trade_number) in a transaction, retrying with a
        freshly generated number if the first one is already taken.
        """
        attempt = 1
        while True:
            trade_number = generate_trade_number(now)
            try:
                async with self._transaction() as db:
                    return await operation(db, trade_number)
            except DuplicateTradeNumberError:
                if attempt >= TRADE_NUMBER_ATTEMPTS:
                    raise
                logger.warning(
                    "Trade number collision, retrying",
                    trade_number=trade_number,
                    attempt=attempt,
                )
                attempt += 1

    def _publish(
        self,
        event_type: TradeEventType,
        trade: Trade,
        recipient_ids: Iterable[uuid.UUID],
        **details: Any
    ) -> None:
        log_trade_event(event_type.value, trade, **details)
        self.dispatcher.dispatch(
            event_type,
            trade.id,
            recipient_ids,
            {"trade_number": trade.trade_number, "status": trade.status},
        )

    # ---------------------------------------------------------------
    # Input checks shared by propose and counter
    # ---------------------------------------------------------------

    def _validate_terms(
        self,
        initiator_id: uuid.UUID,
        receiver_id: uuid.UUID,
        offered_listing_ids: list[uuid.UUID],
        requested_listing_ids: list[uuid.UUID],
        cash_amount: Any,
        cash_payer_id: uuid.UUID | None,
        message: str | None,
        deadline: datetime | None,
        now: datetime,
    ) -> tuple[Decimal, uuid.UUID | None, datetime]:
        if initiator_id == receiver_id:
            raise InvalidParticipantError("A user cannot trade with themselves")

        if not offered_listing_ids or not requested_listing_ids:
            raise ValidationError("Both sides must include at least one listing")

        all_ids = list(offered_listing_ids) + list(requested_listing_ids)
        if len(set(all_ids)) != len(all_ids):
            raise ValidationError("A listing may appear only once in a trade")

        cash = to_money(cash_amount or 0)
        if cash < 0:
            raise ValidationError("cash_amount must not be negative")
        if cash == 0:
            cash_payer_id = None
        elif cash_payer_id is None:
            raise ValidationError("cash_payer_id is required when cash_amount is positive")
        elif cash_payer_id not in (initiator_id, receiver_id):
            raise InvalidParticipantError("cash_payer_id must be one of the participants")

        if message is not None and len(message) > machine.MAX_TEXT_LENGTH:
            raise ValidationError(f"message must be at most {machine.MAX_TEXT_LENGTH} characters")

        if deadline is None:
            deadline = now + timedelta(hours=self.settings.trade_response_deadline_hours)
        elif deadline.tzinfo is None:
            raise ValidationError("deadline must include a timezone")
        if deadline <= now:
            raise ValidationError("deadline must be in the future")

        return cash, cash_payer_id, deadline

    async def _snapshot_values(
        self,
        db: AsyncSession,
        listing_ids: list[uuid.UUID]
    ) -> dict[uuid.UUID, Decimal]:
        listings = await self.gateway.get_listings(db, listing_ids)
        missing = [i for i in listing_ids if i not in listings]
        if missing:
            raise ItemUnavailableError(
                details={"listings": {str(i): "not_found" for i in missing}}
            )
        return {i: to_money(listings[i].price) for i in listing_ids}

    async def _create_revision(
        self,
        db: AsyncSession,
        initiator_id: uuid.UUID,
        receiver_id: uuid.UUID,
        offered_listing_ids: list[uuid.UUID],
        requested_listing_ids: list[uuid.UUID],
        cash: Decimal,
        cash_payer_id: uuid.UUID | None,
        message: str | None,
        deadline: datetime,
        now: datetime,
        trade_number: str,
        previous: Trade | None = None,
        trade_id: uuid.UUID | None = None,
    ) -> Trade:
        values = await self._snapshot_values(db, offered_listing_ids + requested_listing_ids)
        items = [(i, TradeSide.INITIATOR, values[i]) for i in offered_listing_ids]
        items += [(i, TradeSide.RECEIVER, values[i]) for i in requested_listing_ids]

        chain: dict[str, Any] = {}
        if previous is not None:
            chain = {
                "root_trade_id": previous.root_trade_id or previous.id,
                "supersedes_trade_id": previous.id,
                "revision": previous.revision + 1,
            }

        trade = await TradeCRUD.create(
            db,
            trade_number=trade_number,
            initiator_id=initiator_id,
            receiver_id=receiver_id,
            items=items,
            response_deadline=deadline,
            created_at=now,
            cash_amount=cash,
            cash_payer_id=cash_payer_id,
            initiator_message=(message or "").strip() or None,
            id=trade_id,
            **chain
        )

        reusable_from = previous.id if previous is not None else None
        await self.lock_manager.try_lock(
            db, offered_listing_ids, trade.id, initiator_id, reusable_from=reusable_from
        )
        await self.lock_manager.try_lock(
            db, requested_listing_ids, trade.id, receiver_id, reusable_from=reusable_from
        )

        balance = self._summarize(trade)
        if balance.flagged:
            logger.info(
                "Trade proposed with large imbalance",
                trade_id=str(trade.id),
                trade_number=trade.trade_number,
                differential=str(balance.differential),
            )
        return trade

    def _summarize(self, trade: Trade) -> BalanceSummary:
        return summarize(
            trade.items_on(TradeSide.INITIATOR),
            trade.items_on(TradeSide.RECEIVER),
            trade.cash_amount,
            trade.cash_payer_id,
            initiator_id=trade.initiator_id,
            flag_threshold=self.settings.trade_imbalance_flag_threshold,
        )

    # ---------------------------------------------------------------
    # Negotiation
    # ---------------------------------------------------------------

    async def propose_trade(
        self,
        initiator_id: uuid.UUID,
        receiver_id: uuid.UUID,
        offered_listing_ids: list[uuid.UUID],
        requested_listing_ids: list[uuid.UUID],
        cash_amount: Any = 0,
        cash_payer_id: uuid.UUID | None = None,
        message: str | None = None,
        deadline: datetime | None = None,
    ) -> Trade:
        """
        Creates a pending trade and locks every listing on both sides.

        Raises:
            InvalidParticipantError: initiator equals receiver
            ValidationError: empty sides, bad cash terms or past deadline
            ItemUnavailableError: a listing cannot be committed
        """
        now = self.clock()
        offered = list(offered_listing_ids)
        requested = list(requested_listing_ids)
        cash, cash_payer_id, deadline = self._validate_terms(
            initiator_id, receiver_id, offered, requested,
            cash_amount, cash_payer_id, message, deadline, now,
        )

        async def create(db: AsyncSession, trade_number: str) -> Trade:
            return await self._create_revision(
                db, initiator_id, receiver_id, offered, requested,
                cash, cash_payer_id, message, deadline, now, trade_number,
            )

        trade = await self._in_numbered_transaction(create, now)
        self._publish(TradeEventType.PROPOSED, trade, [receiver_id], actor_id=str(initiator_id))
        return trade

    async def counter_offer(
        self,
        trade_id: uuid.UUID,
        actor_id: uuid.UUID,
        new_offered_listing_ids: list[uuid.UUID],
        new_requested_listing_ids: list[uuid.UUID],
        cash_amount: Any = 0,
        cash_payer_id: uuid.UUID | None = None,
        message: str | None = None,
        deadline: datetime | None = None,
    ) -> Trade:
        """
        Replaces a pending revision with a new one proposed by its receiver.

        The counterer becomes the initiator of the new revision. Listings kept
        from the old revision move their locks over, new listings are locked
        and dropped listings are released, all in one transaction. The old
        revision ends as superseded.
        """
        now = self.clock()
        offered = list(new_offered_listing_ids)
        requested = list(new_requested_listing_ids)

        async def replace(db: AsyncSession, trade_number: str) -> tuple[Trade, Trade]:
            previous = await TradeCRUD.get_or_404(db, trade_id, for_update=True)
            machine.plan_counter(previous, actor_id)

            cash, payer_id, response_deadline = self._validate_terms(
                actor_id, previous.initiator_id, offered, requested,
                cash_amount, cash_payer_id, message, deadline, now,
            )

            new_trade_id = uuid.uuid4()
            previous_listing_ids = previous.listing_ids()
            await TradeCRUD.transition(
                db,
                previous,
                **machine.plan_supersede(previous, now, new_trade_id, trade_number)
            )

            trade = await self._create_revision(
                db, actor_id, previous.initiator_id, offered, requested,
                cash, payer_id, message, response_deadline, now, trade_number,
                previous=previous,
                trade_id=new_trade_id,
            )

            kept = set(offered) | set(requested)
            dropped = [i for i in previous_listing_ids if i not in kept]
            await self.lock_manager.release(db, dropped, previous.id)
            return previous, trade

        with trade_log_context(trade_id):
            previous, trade = await self._in_numbered_transaction(replace, now)
            self._publish(
                TradeEventType.COUNTERED,
                trade,
                [trade.receiver_id],
                actor_id=str(actor_id),
                supersedes=str(previous.id),
            )
        return trade

    async def accept_trade(
        self,
        trade_id: uuid.UUID,
        actor_id: uuid.UUID,
        message: str | None = None,
    ) -> Trade:
        """
        Receiver accepts a pending trade. A cash leg produces a settlement
        intent for the payment engine.
        """
        now = self.clock()
        with trade_log_context(trade_id):
            async with self._transaction() as db:
                trade = await TradeCRUD.get_or_404(db, trade_id, for_update=True)
                await TradeCRUD.transition(db, trade, **machine.plan_accept(trade, actor_id, now, message))

                if trade.cash_amount and trade.cash_amount > 0:
                    payer_side = trade.side_of(trade.cash_payer_id)
                    await CashIntentCRUD.create(
                        db,
                        trade_id=trade.id,
                        payer_id=trade.cash_payer_id,
                        payee_id=trade.user_on(payer_side.other),
                        amount=to_money(trade.cash_amount),
                        commission=commission_for(trade.cash_amount, self.settings.trade_cash_commission_rate),
                        created_at=now,
                    )

            self._publish(TradeEventType.ACCEPTED, trade, [trade.initiator_id], actor_id=str(actor_id))
        return trade

    async def reject_trade(
        self,
        trade_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str | None = None,
    ) -> Trade:
        """Either participant declines a pending trade; all locks are released."""
        now = self.clock()
        with trade_log_context(trade_id):
            async with self._transaction() as db:
                trade = await TradeCRUD.get_or_404(db, trade_id, for_update=True)
                await TradeCRUD.transition(db, trade, **machine.plan_reject(trade, actor_id, now, reason))
                released = await self.lock_manager.release_all(db, trade.id)

            counterpart = trade.user_on(trade.side_of(actor_id).other)
            self._publish(
                TradeEventType.REJECTED,
                trade,
                [counterpart],
                actor_id=str(actor_id),
                released_listings=len(released),
            )
        return trade

    async def cancel_trade(
        self,
        trade_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str | None = None,
    ) -> Trade:
        """
        Cancels a trade before both legs have shipped. Locks are released,
        no ownership moves and any cash intent is voided.
        """
        now = self.clock()
        with trade_log_context(trade_id):
            async with self._transaction() as db:
                trade = await TradeCRUD.get_or_404(db, trade_id, for_update=True)
                await TradeCRUD.transition(db, trade, **machine.plan_cancel(trade, actor_id, now, reason))
                released = await self.lock_manager.release_all(db, trade.id)
                await CashIntentCRUD.resolve(db, trade.id, CashIntentStatus.VOIDED, now)

            counterpart = trade.user_on(trade.side_of(actor_id).other)
            self._publish(
                TradeEventType.CANCELLED,
                trade,
                [counterpart],
                actor_id=str(actor_id),
                released_listings=len(released),
            )
        return trade

    # ---------------------------------------------------------------
    # Fulfillment
    # ---------------------------------------------------------------

    async def ship_trade(
        self,
        trade_id: uuid.UUID,
        actor_id: uuid.UUID,
        tracking_number: str,
        provider: str,
    ) -> Trade:
        """Records the actor's shipment of their leg."""
        now = self.clock()
        with trade_log_context(trade_id):
            async with self._transaction() as db:
                trade = await TradeCRUD.get_or_404(db, trade_id, for_update=True)
                side, values = machine.plan_ship(trade, actor_id, now, tracking_number, provider)
                await TradeCRUD.transition(db, trade, **values)

            self._publish(
                TradeEventType.SHIPPED,
                trade,
                [trade.user_on(side.other)],
                actor_id=str(actor_id),
                side=side.value,
                carrier=values[f"{side.value}_carrier"],
            )
        return trade

    async def confirm_delivery(self, trade_id: uuid.UUID, actor_id: uuid.UUID) -> Trade:
        """
        Actor confirms the leg shipped to them arrived. The second
        confirmation completes the trade: locks are released, ownership of
        every listing moves to the other side and the cash intent becomes
        releasable.
        """
        now = self.clock()
        with trade_log_context(trade_id):
            async with self._transaction() as db:
                trade = await TradeCRUD.get_or_404(db, trade_id, for_update=True)
                leg, values = machine.plan_confirm_delivery(trade, actor_id, now)
                await TradeCRUD.transition(db, trade, **values)

                completed = trade.trade_status is TradeStatus.CONFIRMED
                if completed:
                    await self.lock_manager.release_all(db, trade.id)
                    for side in TradeSide:
                        new_owner = trade.user_on(side.other)
                        for listing_id in trade.listing_ids(side):
                            await self.gateway.transfer_ownership(db, listing_id, new_owner)
                    await CashIntentCRUD.resolve(db, trade.id, CashIntentStatus.RELEASABLE, now)

            self._publish(
                TradeEventType.DELIVERED,
                trade,
                [trade.user_on(leg)],
                actor_id=str(actor_id),
                leg=leg.value,
            )
            if completed:
                self._publish(TradeEventType.COMPLETED, trade, trade.participant_ids())
        return trade

    # ---------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------

    async def get_trade(self, trade_id: uuid.UUID, viewer_id: uuid.UUID | None = None) -> Trade:
        async with self.session_factory() as db:
            trade = await TradeCRUD.get_or_404(db, trade_id)
        if viewer_id is not None:
            machine.resolve_actor(trade, viewer_id)
        return trade

    async def list_trades(
        self,
        user_id: uuid.UUID,
        status: TradeStatus | None = None,
        role: TradeSide | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Trade]:
        if limit < 1 or limit > 100:
            raise ValidationError("limit must be between 1 and 100")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        async with self.session_factory() as db:
            return await TradeCRUD.list_for_user(db, user_id, status, role, limit, offset)

    async def get_trade_history(
        self,
        trade_id: uuid.UUID,
        viewer_id: uuid.UUID | None = None
    ) -> list[Trade]:
        """Every revision of the negotiation the trade belongs to, oldest first."""
        async with self.session_factory() as db:
            trade = await TradeCRUD.get_or_404(db, trade_id)
            if viewer_id is not None:
                machine.resolve_actor(trade, viewer_id)
            return await TradeCRUD.list_revisions(db, trade.root_trade_id or trade.id)

    async def get_balance(
        self,
        trade_id: uuid.UUID,
        viewer_id: uuid.UUID | None = None
    ) -> BalanceSummary:
        trade = await self.get_trade(trade_id, viewer_id)
        return self._summarize(trade)
