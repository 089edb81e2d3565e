"""
Custom exception classes for the application.
Provides structured error handling with HTTP status code mapping.
Trade errors carry an error_code naming the semantic error kind surfaced to callers.
"""

from typing import Any


__all__ = [
    "AppException",
    "AuthenticationError",
    "NotFoundError",
    "ValidationError",
    "TradeError",
    "InvalidParticipantError",
    "ItemUnavailableError",
    "InvalidStateTransitionError",
    "AlreadyActedOnThisLegError",
    "TradeExpiredError",
    "StaleStateError",
    "DuplicateTradeNumberError",
]


class AppException(Exception):
    """
    Base exception class for all application-specific errors.
    Includes status code and optional detail dictionary.
    """

    status_code: int = 500
    error_code: str = "InternalError"
    default_message: str = "An unexpected error occurred"
    retryable: bool = False

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(AppException):
    """
    Raised when authentication fails.
    Invalid credentials, expired tokens, missing auth headers.
    """
    status_code = 401
    error_code = "AuthenticationFailed"
    default_message = "Authentication failed"


class NotFoundError(AppException):
    """
    Raised when a requested resource is not found.
    """
    status_code = 404
    error_code = "NotFound"
    default_message = "Resource not found"


class ValidationError(AppException):
    """
    Raised when input validation fails.
    Invalid parameters, malformed data.
    """
    status_code = 400
    error_code = "ValidationFailed"
    default_message = "Validation failed"


class TradeError(AppException):
    """
    Base class for trade guard violations.
    Raised before any mutation is flushed, so the surrounding
    transaction rolls back with nothing written.
    """
    status_code = 409
    error_code = "TradeError"
    default_message = "Trade operation failed"


class InvalidParticipantError(TradeError):
    """
    Initiator equals receiver, or the actor is not allowed to act on the
    trade in that role (not a party, or the wrong party).
    """
    status_code = 403
    error_code = "InvalidParticipant"
    default_message = "User is not a valid participant for this action"


class ItemUnavailableError(TradeError):
    """
    A referenced listing is missing, not owned by the claiming side,
    not tradeable, not active, or locked by another active trade.
    """
    error_code = "ItemUnavailable"
    default_message = "One or more listings are unavailable for trading"


class InvalidStateTransitionError(TradeError):
    """
    The requested action is not legal from the trade's current state.
    Terminal for the request; retrying with the same intent will not help.
    """
    error_code = "InvalidStateTransition"
    default_message = "Action not allowed in the trade's current state"


class AlreadyActedOnThisLegError(TradeError):
    """
    Duplicate ship or delivery confirmation for the same side.
    """
    error_code = "AlreadyActedOnThisLeg"
    default_message = "This leg has already been recorded"


class TradeExpiredError(TradeError):
    """
    The trade was cancelled by the expiry sweeper.
    """
    status_code = 410
    error_code = "Expired"
    default_message = "Trade expired without a response"


class StaleStateError(TradeError):
    """
    Optimistic concurrency conflict: the trade changed since it was read.
    Recoverable; the caller should refetch and retry.
    """
    error_code = "StaleState"
    default_message = "Trade was modified concurrently; refetch and retry"
    retryable = True


class DuplicateTradeNumberError(TradeError):
    """
    A generated trade number is already taken.
    The engine retries once with a fresh suffix before surfacing this.
    """
    error_code = "DuplicateTradeNumber"
    default_message = "Could not allocate a unique trade number; retry"
    retryable = True
