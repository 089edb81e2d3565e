"""
Trade schemas for proposals, counter-offers, fulfillment actions and
their API responses.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field


class ProposeTradeRequest(BaseModel):
    """
    Schema for proposing a new trade to another user.
    The authenticated user is the initiator.
    """
    receiver_id: uuid.UUID
    offered_listing_ids: list[uuid.UUID] = Field(..., min_length=1)
    requested_listing_ids: list[uuid.UUID] = Field(..., min_length=1)
    cash_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    cash_payer_id: uuid.UUID | None = None
    message: str | None = Field(None, max_length=500)
    deadline: datetime | None = Field(None, description="Response deadline; defaults to 72 hours")


class CounterOfferRequest(BaseModel):
    """
    Schema for countering a pending trade.
    Listing ids are from the counterer's point of view: offered are theirs.
    """
    offered_listing_ids: list[uuid.UUID] = Field(..., min_length=1)
    requested_listing_ids: list[uuid.UUID] = Field(..., min_length=1)
    cash_amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    cash_payer_id: uuid.UUID | None = None
    message: str | None = Field(None, max_length=500)
    deadline: datetime | None = None


class AcceptTradeRequest(BaseModel):
    message: str | None = Field(None, max_length=500)


class ReasonRequest(BaseModel):
    """
    Schema for reject and cancel actions.
    """
    reason: str | None = Field(None, max_length=500)


class ShipTradeRequest(BaseModel):
    """
    Schema for recording the actor's shipment.
    Tracking data is stored as given; carriers are not validated.
    """
    tracking_number: str = Field(..., min_length=1, max_length=100)
    provider: str = Field(..., min_length=1, max_length=50)


class TradeItemResponse(BaseModel):
    listing_id: uuid.UUID
    side: str
    value_at_trade: Decimal

    model_config = {"from_attributes": True}


class TradeResponse(BaseModel):
    """
    Schema for a trade revision in API responses.
    """
    id: uuid.UUID
    trade_number: str
    initiator_id: uuid.UUID
    receiver_id: uuid.UUID
    status: str
    cash_amount: Decimal
    cash_payer_id: uuid.UUID | None
    initiator_message: str | None
    receiver_message: str | None
    cancel_reason: str | None
    expired: bool
    response_deadline: datetime
    accepted_at: datetime | None
    initiator_shipped_at: datetime | None
    receiver_shipped_at: datetime | None
    initiator_delivered_at: datetime | None
    receiver_delivered_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    initiator_carrier: str | None
    initiator_tracking_number: str | None
    receiver_carrier: str | None
    receiver_tracking_number: str | None
    root_trade_id: uuid.UUID | None
    supersedes_trade_id: uuid.UUID | None
    superseded_by_trade_id: uuid.UUID | None
    revision: int
    version: int
    created_at: datetime
    updated_at: datetime
    items: list[TradeItemResponse] = []

    model_config = {"from_attributes": True}


class BalanceResponse(BaseModel):
    """
    Schema for the valuation summary of a trade.
    A positive differential means the initiator receives more value.
    """
    initiator_total: Decimal
    receiver_total: Decimal
    cash_adjustment: Decimal
    differential: Decimal
    flagged: bool

    model_config = {"from_attributes": True}


class TradeDetailResponse(TradeResponse):
    """Trade with its valuation summary."""
    balance: BalanceResponse
