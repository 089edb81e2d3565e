"""
FastAPI dependency injection functions.
Provides reusable dependencies for the authenticated user and the trade engine.
"""

import uuid
from typing import Annotated, TypeAlias

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from src.core.security import user_id_from_token
from src.services.trade_engine import TradeEngine


security = HTTPBearer(auto_error=True)


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)]
) -> uuid.UUID:
    """
    Validates the bearer token issued by the identity service.

    Returns:
        Authenticated user's id

    Raises:
        AuthenticationError: If token is invalid or expired
    """
    return user_id_from_token(credentials.credentials)


def get_trade_engine(request: Request) -> TradeEngine:
    """
    Returns the engine created during application startup.
    """
    return request.app.state.trade_engine


# Type aliases for dependency injection - improves readability and IDE support
CurrentUserId: TypeAlias = Annotated[uuid.UUID, Depends(get_current_user_id)]
Engine: TypeAlias = Annotated[TradeEngine, Depends(get_trade_engine)]


__all__ = [
    "get_current_user_id",
    "get_trade_engine",
    "CurrentUserId",
    "Engine",
]
