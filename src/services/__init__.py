"""
Service module exports.
Import individual modules directly to avoid circular imports.

Example:
    from src.services.trade_engine import TradeEngine
    from src.services.expiry_sweeper import ExpirySweeper
"""

__all__ = [
    "TradeEngine",
    "ExpirySweeper",
    "ItemLockManager",
    "SqlListingGateway",
    "NotificationDispatcher",
    "BalanceSummary",
    "compute_balance",
]


def __getattr__(name: str):
    """
    Lazy imports so importing one service does not load the database layer.
    """
    if name == "TradeEngine":
        from src.services.trade_engine import TradeEngine
        return TradeEngine
    elif name == "ExpirySweeper":
        from src.services.expiry_sweeper import ExpirySweeper
        return ExpirySweeper
    elif name == "ItemLockManager":
        from src.services.item_lock_manager import ItemLockManager
        return ItemLockManager
    elif name == "SqlListingGateway":
        from src.services.listing_gateway import SqlListingGateway
        return SqlListingGateway
    elif name == "NotificationDispatcher":
        from src.services.notification_dispatcher import NotificationDispatcher
        return NotificationDispatcher
    elif name in ("BalanceSummary", "compute_balance"):
        from src.services import valuation
        return getattr(valuation, name)

    raise AttributeError(f"module 'src.services' has no attribute '{name}'")
