"""Custom exceptions for structural input errors.

Constraint infeasibility is not an exception; it is reported through
``OptimizationStatus.INFEASIBLE`` on the result.
"""

from __future__ import annotations

from typing import Any


class AllocatorError(Exception):
    """Base allocator exception with a structured error payload."""

    error_code: str = "ALLOCATOR_ERROR"
    message: str = "Portfolio optimization failed"

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a problem+json style payload for the calling layer."""
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }


class EmptyPortfolioError(AllocatorError):
    """No positions were supplied."""

    error_code = "EMPTY_PORTFOLIO"
    message = "At least one position is required"


class InvalidTimeframeError(AllocatorError):
    """Timeframe is not one of the recognized values."""

    error_code = "INVALID_TIMEFRAME"
    message = "Invalid timeframe"


class InvalidConfigError(AllocatorError):
    """Objective or rebalance frequency could not be parsed."""

    error_code = "INVALID_CONFIG"
    message = "Invalid optimization config"
