"""
Pydantic schema exports.
"""

from src.schemas.common import (
    ErrorResponse,
    HealthResponse,
)
from src.schemas.trade import (
    ProposeTradeRequest,
    CounterOfferRequest,
    AcceptTradeRequest,
    ReasonRequest,
    ShipTradeRequest,
    TradeItemResponse,
    TradeResponse,
    TradeDetailResponse,
    BalanceResponse,
)

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "ProposeTradeRequest",
    "CounterOfferRequest",
    "AcceptTradeRequest",
    "ReasonRequest",
    "ShipTradeRequest",
    "TradeItemResponse",
    "TradeResponse",
    "TradeDetailResponse",
    "BalanceResponse",
]
