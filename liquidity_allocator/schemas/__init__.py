"""Pydantic payload schemas."""

from .optimization import (
    ConstraintsPayload,
    OptimizationConfigPayload,
    OptimizationRequest,
    OptimizationResponse,
    PositionPayload,
)


__all__ = [
    "ConstraintsPayload",
    "OptimizationConfigPayload",
    "OptimizationRequest",
    "OptimizationResponse",
    "PositionPayload",
]
