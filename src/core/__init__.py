"""
Core module exports.
Avoid importing from this file to prevent circular imports.
Import directly from specific modules instead.
"""

__all__ = [
    "security",
    "exceptions",
    "logging_service",
    "retry",
]
