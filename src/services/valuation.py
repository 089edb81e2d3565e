"""
Valuation Calculator - per-side item totals and the net cash differential.
All arithmetic is Decimal; values are quantized to cents with half-up rounding.
The result is informational: large imbalances are flagged, never rejected.
"""

import logging
import uuid
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable

from src.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """
    Quantizes a monetary value to two decimals (ROUND_HALF_UP).
    Floats go through str() so 0.1 stays 0.10 instead of its binary expansion.

    Raises:
        ValidationError: value is not a finite number
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError(f"Invalid monetary amount: {value!r}") from e
    # quiet NaN survives quantize
    if not amount.is_finite():
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    return amount


def _item_value(item: Any) -> Decimal:
    # TradeItem rows carry the snapshot; plain numbers are accepted as-is
    value = getattr(item, "value_at_trade", item)
    return to_money(value)


def side_total(items: Iterable[Any]) -> Decimal:
    """Sum of value_at_trade over one side's items."""
    return to_money(sum((_item_value(item) for item in items), Decimal("0")))


def compute_balance(
    initiator_items: Iterable[Any],
    receiver_items: Iterable[Any],
    cash_amount: Any,
    cash_payer_id: uuid.UUID | None,
    *,
    initiator_id: uuid.UUID,
) -> Decimal:
    """
    Signed differential of an offer.

    receiver_total - initiator_total, plus the cash amount when the
    initiator pays it, minus it when the receiver pays.
    """
    return summarize(
        initiator_items,
        receiver_items,
        cash_amount,
        cash_payer_id,
        initiator_id=initiator_id,
    ).differential


@dataclass(frozen=True)
class BalanceSummary:
    """Breakdown of a trade's value on each side."""
    initiator_total: Decimal
    receiver_total: Decimal
    cash_adjustment: Decimal
    differential: Decimal
    flagged: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def summarize(
    initiator_items: Iterable[Any],
    receiver_items: Iterable[Any],
    cash_amount: Any,
    cash_payer_id: uuid.UUID | None,
    *,
    initiator_id: uuid.UUID,
    flag_threshold: Decimal | None = None,
) -> BalanceSummary:
    """
    Computes totals, the cash adjustment and the signed differential.

    Args:
        initiator_items: Items offered by the initiator (TradeItems or values)
        receiver_items: Items requested from the receiver
        cash_amount: Non-negative cash leg; 0 for none
        cash_payer_id: Participant owing the cash, None without a cash leg
        initiator_id: Used to tell which direction the cash flows
        flag_threshold: |differential| above this is flagged as a large imbalance
    """
    initiator_total = side_total(initiator_items)
    receiver_total = side_total(receiver_items)
    cash = to_money(cash_amount or 0)

    if cash == 0 or cash_payer_id is None:
        cash_adjustment = Decimal("0.00")
    elif cash_payer_id == initiator_id:
        cash_adjustment = cash
    else:
        cash_adjustment = -cash

    differential = to_money(receiver_total - initiator_total + cash_adjustment)
    flagged = flag_threshold is not None and abs(differential) > flag_threshold
    if flagged:
        logger.info(f"Large trade imbalance flagged: differential={differential}")

    return BalanceSummary(
        initiator_total=initiator_total,
        receiver_total=receiver_total,
        cash_adjustment=cash_adjustment,
        differential=differential,
        flagged=flagged,
    )


def commission_for(amount: Any, rate: Decimal) -> Decimal:
    """Platform commission on a cash leg."""
    return to_money(to_money(amount) * rate)
