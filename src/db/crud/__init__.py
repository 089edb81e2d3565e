"""
CRUD module exports.
"""

from src.db.crud.trade import TradeCRUD
from src.db.crud.item_lock import ItemLockCRUD
from src.db.crud.listing import ListingCRUD
from src.db.crud.cash_intent import CashIntentCRUD

__all__ = [
    "TradeCRUD",
    "ItemLockCRUD",
    "ListingCRUD",
    "CashIntentCRUD",
]
