"""
Enumerations shared by trade models, services and schemas.
Values are stored as plain strings in the database.
"""

from enum import Enum


class TradeSide(str, Enum):
    """One of the two participants of a trade."""
    INITIATOR = "initiator"
    RECEIVER = "receiver"

    @property
    def other(self) -> "TradeSide":
        if self is TradeSide.INITIATOR:
            return TradeSide.RECEIVER
        return TradeSide.INITIATOR


class TradeStatus(str, Enum):
    """Lifecycle states of a trade revision."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    INITIATOR_SHIPPED = "initiator_shipped"
    RECEIVER_SHIPPED = "receiver_shipped"
    BOTH_SHIPPED = "both_shipped"
    INITIATOR_DELIVERED = "initiator_delivered"
    RECEIVER_DELIVERED = "receiver_delivered"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    SUPERSEDED = "superseded"


TERMINAL_STATUSES = frozenset({
    TradeStatus.CONFIRMED,
    TradeStatus.REJECTED,
    TradeStatus.CANCELLED,
    TradeStatus.SUPERSEDED,
})


class ListingStatus(str, Enum):
    """Listing states as reported by the inventory service."""
    ACTIVE = "active"
    RESERVED = "reserved"
    SOLD = "sold"
    INACTIVE = "inactive"


class CashIntentStatus(str, Enum):
    """Settlement state of the cash leg handed to the payment engine."""
    PENDING = "pending"
    RELEASABLE = "releasable"
    VOIDED = "voided"


class TradeEventType(str, Enum):
    """Events published to the notification service."""
    PROPOSED = "trade_proposed"
    COUNTERED = "trade_countered"
    ACCEPTED = "trade_accepted"
    REJECTED = "trade_rejected"
    CANCELLED = "trade_cancelled"
    EXPIRED = "trade_expired"
    SHIPPED = "trade_shipped"
    DELIVERED = "trade_delivered"
    COMPLETED = "trade_completed"
