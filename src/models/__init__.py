# Models module
from src.models.trade import Trade, TradeItem
from src.models.item_lock import ItemLock
from src.models.listing import Listing
from src.models.cash_intent import CashSettlementIntent

__all__ = [
    "Trade",
    "TradeItem",
    "ItemLock",
    "Listing",
    "CashSettlementIntent",
]
