"""
Trade and TradeItem models.
A Trade row is one revision of a negotiation between two users; counter-offers
create a new row linked to the revision it supersedes.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Boolean, Integer, Numeric, ForeignKey, Index, Text, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import UUID

from src.db.database import Base
from src.db.types import UTCDateTime, utcnow
from src.models.enums import TradeSide, TradeStatus, TERMINAL_STATUSES


class Trade(Base):
    """
    One revision of a barter between an initiator and a receiver.

    Only the engine writes status and milestone columns after creation.
    The version column backs optimistic concurrency: every flush of a
    changed Trade issues UPDATE ... WHERE version = :loaded_version.
    """

    __tablename__ = "trades"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    trade_number: Mapped[str] = mapped_column(
        String(32),
        unique=True,
        nullable=False,
        index=True
    )
    initiator_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True
    )
    status: Mapped[str] = mapped_column(
        String(24),
        nullable=False,
        default=TradeStatus.PENDING.value
    )

    cash_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00")
    )
    cash_payer_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True
    )

    initiator_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    receiver_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    response_deadline: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False
    )

    # Milestones
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    initiator_shipped_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    receiver_shipped_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    initiator_delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    receiver_delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Shipment legs
    initiator_carrier: Mapped[str | None] = mapped_column(String(50), nullable=True)
    initiator_tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    receiver_carrier: Mapped[str | None] = mapped_column(String(50), nullable=True)
    receiver_tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Revision chain
    root_trade_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True
    )
    supersedes_trade_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("trades.id", ondelete="SET NULL"),
        nullable=True
    )
    superseded_by_trade_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        nullable=True
    )
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    items: Mapped[list["TradeItem"]] = relationship(
        "TradeItem",
        back_populates="trade",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="TradeItem.created_order"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_trades_status_deadline", "status", "response_deadline"),
        CheckConstraint("initiator_id <> receiver_id", name="ck_trades_distinct_participants"),
        CheckConstraint("cash_amount >= 0", name="ck_trades_cash_non_negative"),
        CheckConstraint(
            "NOT (completed_at IS NOT NULL AND cancelled_at IS NOT NULL)",
            name="ck_trades_terminal_exclusive"
        ),
    )

    @property
    def trade_status(self) -> TradeStatus:
        return TradeStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.trade_status in TERMINAL_STATUSES

    def participant_ids(self) -> list[uuid.UUID]:
        return [self.initiator_id, self.receiver_id]

    def side_of(self, user_id: uuid.UUID) -> TradeSide | None:
        """Returns which side the user is on, or None for outsiders."""
        if user_id == self.initiator_id:
            return TradeSide.INITIATOR
        if user_id == self.receiver_id:
            return TradeSide.RECEIVER
        return None

    def user_on(self, side: TradeSide) -> uuid.UUID:
        if side is TradeSide.INITIATOR:
            return self.initiator_id
        return self.receiver_id

    def items_on(self, side: TradeSide) -> list["TradeItem"]:
        return [item for item in self.items if item.side == side.value]

    def listing_ids(self, side: TradeSide | None = None) -> list[uuid.UUID]:
        if side is None:
            return [item.listing_id for item in self.items]
        return [item.listing_id for item in self.items_on(side)]

    def shipped_at(self, side: TradeSide) -> datetime | None:
        if side is TradeSide.INITIATOR:
            return self.initiator_shipped_at
        return self.receiver_shipped_at

    def delivered_at(self, side: TradeSide) -> datetime | None:
        """When the leg shipped by `side` was confirmed delivered."""
        if side is TradeSide.INITIATOR:
            return self.initiator_delivered_at
        return self.receiver_delivered_at

    def __repr__(self) -> str:
        return f"<Trade(id={self.id}, number={self.trade_number}, status={self.status})>"


class TradeItem(Base):
    """
    A listing committed to one side of a trade revision.
    value_at_trade is the listing price snapshotted at proposal time.
    """

    __tablename__ = "trade_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    trade_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("trades.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True
    )
    side: Mapped[str] = mapped_column(
        String(10),
        nullable=False
    )
    value_at_trade: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False
    )
    created_order: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0
    )

    trade: Mapped["Trade"] = relationship(
        "Trade",
        back_populates="items"
    )

    def __repr__(self) -> str:
        return f"<TradeItem(listing={self.listing_id}, side={self.side}, value={self.value_at_trade})>"
