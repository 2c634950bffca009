"""
Application-level exceptions mapped to HTTP responses in ``carecall.main``.
"""

from typing import Any


class CareCallError(Exception):
    """Base exception for domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(CareCallError):
    """A referenced entity does not exist."""
