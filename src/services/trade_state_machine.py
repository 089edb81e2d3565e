"""
Trade State Machine - transition table and guards.

Pure functions over a loaded Trade: each plan_* function checks every
guard for one action and returns the column values the transition writes.
Nothing here touches the database, so a refused action never leaves
partial state behind. Per-side behaviour dispatches on TradeSide.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from src.core.exceptions import (
    AlreadyActedOnThisLegError,
    InvalidParticipantError,
    InvalidStateTransitionError,
    TradeExpiredError,
    ValidationError,
)
from src.models.enums import TradeSide, TradeStatus
from src.models.trade import Trade


class TradeAction(str, Enum):
    """Actions that move a trade between states."""
    COUNTER = "counter"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    SHIP = "ship"
    CONFIRM_DELIVERY = "confirm_delivery"
    EXPIRE = "expire"


ALLOWED_FROM: dict[TradeAction, frozenset[TradeStatus]] = {
    TradeAction.COUNTER: frozenset({TradeStatus.PENDING}),
    TradeAction.ACCEPT: frozenset({TradeStatus.PENDING}),
    TradeAction.REJECT: frozenset({TradeStatus.PENDING}),
    TradeAction.EXPIRE: frozenset({TradeStatus.PENDING}),
    # No unilateral cancel once both legs are in transit
    TradeAction.CANCEL: frozenset({
        TradeStatus.PENDING,
        TradeStatus.ACCEPTED,
        TradeStatus.INITIATOR_SHIPPED,
        TradeStatus.RECEIVER_SHIPPED,
    }),
    TradeAction.SHIP: frozenset({
        TradeStatus.ACCEPTED,
        TradeStatus.INITIATOR_SHIPPED,
        TradeStatus.RECEIVER_SHIPPED,
    }),
    TradeAction.CONFIRM_DELIVERY: frozenset({
        TradeStatus.BOTH_SHIPPED,
        TradeStatus.INITIATOR_DELIVERED,
        TradeStatus.RECEIVER_DELIVERED,
    }),
}

SHIPPED_STATUS = {
    TradeSide.INITIATOR: TradeStatus.INITIATOR_SHIPPED,
    TradeSide.RECEIVER: TradeStatus.RECEIVER_SHIPPED,
}

DELIVERED_STATUS = {
    TradeSide.INITIATOR: TradeStatus.INITIATOR_DELIVERED,
    TradeSide.RECEIVER: TradeStatus.RECEIVER_DELIVERED,
}

MILESTONE_COLUMNS = (
    "created_at",
    "accepted_at",
    "initiator_shipped_at",
    "receiver_shipped_at",
    "initiator_delivered_at",
    "receiver_delivered_at",
)

MAX_TEXT_LENGTH = 500


def can_transition(status: TradeStatus, action: TradeAction) -> bool:
    return status in ALLOWED_FROM[action]


def ensure_not_expired(trade: Trade) -> None:
    """Sweeper-cancelled trades answer every action with Expired."""
    if trade.expired:
        raise TradeExpiredError(
            f"Trade {trade.trade_number} expired without a response",
            details={"trade_id": str(trade.id), "cancelled_at": _iso(trade.cancelled_at)},
        )


def resolve_actor(trade: Trade, actor_id: uuid.UUID) -> TradeSide:
    """Side the actor is on; outsiders are refused."""
    side = trade.side_of(actor_id)
    if side is None:
        raise InvalidParticipantError(
            "User is not a participant of this trade",
            details={"trade_id": str(trade.id)},
        )
    return side


def ensure_action_allowed(trade: Trade, action: TradeAction) -> None:
    if not can_transition(trade.trade_status, action):
        raise InvalidStateTransitionError(
            f"Cannot {action.value.replace('_', ' ')} a trade in status {trade.status}",
            details={"trade_id": str(trade.id), "status": trade.status, "action": action.value},
        )


def _guard(trade: Trade, actor_id: uuid.UUID, action: TradeAction) -> TradeSide:
    ensure_not_expired(trade)
    side = resolve_actor(trade, actor_id)
    ensure_action_allowed(trade, action)
    return side


def _require_side(trade: Trade, side: TradeSide, required: TradeSide, action: TradeAction) -> None:
    if side is not required:
        raise InvalidParticipantError(
            f"Only the {required.value} may {action.value} this trade",
            details={"trade_id": str(trade.id), "actor_side": side.value},
        )


def _check_text(value: str | None, field: str) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationError(f"{field} must be at most {MAX_TEXT_LENGTH} characters")
    return value or None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def stamp(trade: Trade, now: datetime) -> datetime:
    """
    Timestamp for the next milestone: never earlier than any milestone
    already recorded, so milestones stay non-decreasing under clock skew.
    """
    recorded = [getattr(trade, column) for column in MILESTONE_COLUMNS]
    latest = max((value for value in recorded if value is not None), default=now)
    return max(now, latest)


def plan_counter(trade: Trade, actor_id: uuid.UUID) -> TradeSide:
    """Only the receiver of the current pending revision may counter."""
    side = _guard(trade, actor_id, TradeAction.COUNTER)
    _require_side(trade, side, TradeSide.RECEIVER, TradeAction.COUNTER)
    return side


def plan_supersede(trade: Trade, now: datetime, new_trade_id: uuid.UUID, new_trade_number: str) -> dict[str, Any]:
    return {
        "status": TradeStatus.SUPERSEDED.value,
        "cancelled_at": stamp(trade, now),
        "superseded_by_trade_id": new_trade_id,
        "cancel_reason": f"Superseded by counter-offer {new_trade_number}",
        "updated_at": now,
    }


def plan_accept(trade: Trade, actor_id: uuid.UUID, now: datetime, message: str | None = None) -> dict[str, Any]:
    side = _guard(trade, actor_id, TradeAction.ACCEPT)
    _require_side(trade, side, TradeSide.RECEIVER, TradeAction.ACCEPT)
    return {
        "status": TradeStatus.ACCEPTED.value,
        "accepted_at": stamp(trade, now),
        "receiver_message": _check_text(message, "message"),
        "updated_at": now,
    }


def plan_reject(trade: Trade, actor_id: uuid.UUID, now: datetime, reason: str | None = None) -> dict[str, Any]:
    _guard(trade, actor_id, TradeAction.REJECT)
    return {
        "status": TradeStatus.REJECTED.value,
        "cancelled_at": stamp(trade, now),
        "cancel_reason": _check_text(reason, "reason"),
        "updated_at": now,
    }


def plan_cancel(trade: Trade, actor_id: uuid.UUID, now: datetime, reason: str | None = None) -> dict[str, Any]:
    _guard(trade, actor_id, TradeAction.CANCEL)
    return {
        "status": TradeStatus.CANCELLED.value,
        "cancelled_at": stamp(trade, now),
        "cancel_reason": _check_text(reason, "reason"),
        "updated_at": now,
    }


def plan_ship(
    trade: Trade,
    actor_id: uuid.UUID,
    now: datetime,
    tracking_number: str,
    provider: str,
) -> tuple[TradeSide, dict[str, Any]]:
    """
    Records the actor's shipment. The first shipper moves the trade to
    <side>_shipped, the second to both_shipped.
    """
    ensure_not_expired(trade)
    side = resolve_actor(trade, actor_id)
    if trade.shipped_at(side) is not None and not trade.is_terminal:
        raise AlreadyActedOnThisLegError(
            f"The {side.value} has already shipped",
            details={"trade_id": str(trade.id), "side": side.value},
        )
    ensure_action_allowed(trade, TradeAction.SHIP)

    tracking_number = (tracking_number or "").strip()
    provider = (provider or "").strip()
    if not tracking_number or not provider:
        raise ValidationError("tracking_number and provider are required")

    if trade.shipped_at(side.other) is not None:
        status = TradeStatus.BOTH_SHIPPED
    else:
        status = SHIPPED_STATUS[side]

    return side, {
        "status": status.value,
        f"{side.value}_shipped_at": stamp(trade, now),
        f"{side.value}_carrier": provider,
        f"{side.value}_tracking_number": tracking_number,
        "updated_at": now,
    }


def plan_confirm_delivery(
    trade: Trade,
    actor_id: uuid.UUID,
    now: datetime,
) -> tuple[TradeSide, dict[str, Any]]:
    """
    Records receipt of the leg travelling to the actor, i.e. the leg
    shipped by the other side. Both legs must have shipped first.

    Returns:
        The side whose leg was confirmed, and the values to write.
        A second confirmation completes the trade.
    """
    ensure_not_expired(trade)
    side = resolve_actor(trade, actor_id)
    leg = side.other
    if trade.delivered_at(leg) is not None and not trade.is_terminal:
        raise AlreadyActedOnThisLegError(
            f"Delivery of the {leg.value}'s shipment is already confirmed",
            details={"trade_id": str(trade.id), "leg": leg.value},
        )
    ensure_action_allowed(trade, TradeAction.CONFIRM_DELIVERY)

    delivered_at = stamp(trade, now)
    values: dict[str, Any] = {
        f"{leg.value}_delivered_at": delivered_at,
        "updated_at": now,
    }
    if trade.delivered_at(leg.other) is not None:
        values["status"] = TradeStatus.CONFIRMED.value
        values["completed_at"] = delivered_at
    else:
        values["status"] = DELIVERED_STATUS[leg].value
    return leg, values
