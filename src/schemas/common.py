"""
Common schemas used across multiple endpoints.
"""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """
    Standard error response format.
    error carries the error kind (e.g. ItemUnavailable, StaleState).
    """
    error: str
    message: str
    details: dict | None = None


class HealthResponse(BaseModel):
    status: str
    database: str
    sweeper_running: bool
    version: str
