"""
API route module exports.
"""

from src.api.routes.trades import router as trades_router

__all__ = [
    "trades_router",
]
