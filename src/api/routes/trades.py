"""
Trade routes for proposals, counter-offers and fulfillment.
The authenticated user is always the actor; guard violations surface
through the application's error handler.
"""

import uuid

from fastapi import APIRouter, Query, status

from src.api.deps import CurrentUserId, Engine
from src.models.enums import TradeSide, TradeStatus
from src.schemas.trade import (
    AcceptTradeRequest,
    BalanceResponse,
    CounterOfferRequest,
    ProposeTradeRequest,
    ReasonRequest,
    ShipTradeRequest,
    TradeDetailResponse,
    TradeResponse,
)


router = APIRouter(prefix="/trades", tags=["Trades"])


@router.post("", response_model=TradeResponse, status_code=status.HTTP_201_CREATED)
async def propose_trade(
    request: ProposeTradeRequest,
    engine: Engine,
    current_user_id: CurrentUserId
) -> TradeResponse:
    """
    Proposes a trade to another user.
    Every listing on both sides is locked until the trade ends.
    """
    trade = await engine.propose_trade(
        initiator_id=current_user_id,
        receiver_id=request.receiver_id,
        offered_listing_ids=request.offered_listing_ids,
        requested_listing_ids=request.requested_listing_ids,
        cash_amount=request.cash_amount,
        cash_payer_id=request.cash_payer_id,
        message=request.message,
        deadline=request.deadline,
    )
    return TradeResponse.model_validate(trade)


@router.get("", response_model=list[TradeResponse])
async def list_trades(
    engine: Engine,
    current_user_id: CurrentUserId,
    status_filter: TradeStatus | None = Query(None, alias="status"),
    role: TradeSide | None = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0)
) -> list[TradeResponse]:
    """
    Returns the user's trades, newest first.
    """
    trades = await engine.list_trades(current_user_id, status_filter, role, limit, offset)
    return [TradeResponse.model_validate(t) for t in trades]


@router.get("/{trade_id}", response_model=TradeDetailResponse)
async def get_trade(
    trade_id: uuid.UUID,
    engine: Engine,
    current_user_id: CurrentUserId
) -> TradeDetailResponse:
    """
    Returns one trade revision with its valuation summary.
    """
    trade = await engine.get_trade(trade_id, viewer_id=current_user_id)
    balance = await engine.get_balance(trade_id)
    response = TradeResponse.model_validate(trade)
    return TradeDetailResponse(
        **response.model_dump(),
        balance=BalanceResponse.model_validate(balance),
    )


@router.get("/{trade_id}/history", response_model=list[TradeResponse])
async def get_trade_history(
    trade_id: uuid.UUID,
    engine: Engine,
    current_user_id: CurrentUserId
) -> list[TradeResponse]:
    """
    Returns every revision of the negotiation, oldest first.
    """
    revisions = await engine.get_trade_history(trade_id, viewer_id=current_user_id)
    return [TradeResponse.model_validate(t) for t in revisions]


@router.post("/{trade_id}/counter", response_model=TradeResponse, status_code=status.HTTP_201_CREATED)
async def counter_offer(
    trade_id: uuid.UUID,
    request: CounterOfferRequest,
    engine: Engine,
    current_user_id: CurrentUserId
) -> TradeResponse:
    """
    Counters a pending trade. Returns the new revision.
    """
    trade = await engine.counter_offer(
        trade_id,
        current_user_id,
        new_offered_listing_ids=request.offered_listing_ids,
        new_requested_listing_ids=request.requested_listing_ids,
        cash_amount=request.cash_amount,
        cash_payer_id=request.cash_payer_id,
        message=request.message,
        deadline=request.deadline,
    )
    return TradeResponse.model_validate(trade)


@router.post("/{trade_id}/accept", response_model=TradeResponse)
async def accept_trade(
    trade_id: uuid.UUID,
    engine: Engine,
    current_user_id: CurrentUserId,
    request: AcceptTradeRequest | None = None
) -> TradeResponse:
    message = request.message if request else None
    trade = await engine.accept_trade(trade_id, current_user_id, message=message)
    return TradeResponse.model_validate(trade)


@router.post("/{trade_id}/reject", response_model=TradeResponse)
async def reject_trade(
    trade_id: uuid.UUID,
    engine: Engine,
    current_user_id: CurrentUserId,
    request: ReasonRequest | None = None
) -> TradeResponse:
    reason = request.reason if request else None
    trade = await engine.reject_trade(trade_id, current_user_id, reason=reason)
    return TradeResponse.model_validate(trade)


@router.post("/{trade_id}/ship", response_model=TradeResponse)
async def ship_trade(
    trade_id: uuid.UUID,
    request: ShipTradeRequest,
    engine: Engine,
    current_user_id: CurrentUserId
) -> TradeResponse:
    """
    Records the user's shipment with its tracking number.
    """
    trade = await engine.ship_trade(
        trade_id,
        current_user_id,
        tracking_number=request.tracking_number,
        provider=request.provider,
    )
    return TradeResponse.model_validate(trade)


@router.post("/{trade_id}/confirm-delivery", response_model=TradeResponse)
async def confirm_delivery(
    trade_id: uuid.UUID,
    engine: Engine,
    current_user_id: CurrentUserId
) -> TradeResponse:
    """
    Confirms the shipment sent to the user arrived.
    The second confirmation completes the trade.
    """
    trade = await engine.confirm_delivery(trade_id, current_user_id)
    return TradeResponse.model_validate(trade)


@router.post("/{trade_id}/cancel", response_model=TradeResponse)
async def cancel_trade(
    trade_id: uuid.UUID,
    engine: Engine,
    current_user_id: CurrentUserId,
    request: ReasonRequest | None = None
) -> TradeResponse:
    reason = request.reason if request else None
    trade = await engine.cancel_trade(trade_id, current_user_id, reason=reason)
    return TradeResponse.model_validate(trade)
