"""
Listing model: local projection of the inventory service's listings.
The SQL listing gateway reads and updates it inside trade transactions.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Boolean, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID

from src.db.database import Base
from src.db.types import UTCDateTime, utcnow
from src.models.enums import ListingStatus


class Listing(Base):
    """
    An item offered on the marketplace.
    Ownership, price, tradeable flag and status are owned by the inventory
    service; the engine only reserves, releases and transfers listings.
    """

    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True
    )
    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default=""
    )
    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False
    )
    is_tradeable: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ListingStatus.ACTIVE.value
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, owner={self.owner_id}, status={self.status})>"
