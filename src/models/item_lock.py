"""
ItemLock model: the transactional lock table keyed by listing id.
A listing can be committed to at most one active trade because
listing_id is the primary key.
"""

import uuid
from datetime import datetime
from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from src.db.database import Base
from src.db.types import UTCDateTime, utcnow


class ItemLock(Base):
    """
    Maps a listing to the trade revision currently holding it.
    Rows are written only through the item lock manager.
    """

    __tablename__ = "item_locks"

    listing_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True
    )
    trade_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("trades.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    locked_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow
    )

    def __repr__(self) -> str:
        return f"<ItemLock(listing={self.listing_id}, trade={self.trade_id})>"
