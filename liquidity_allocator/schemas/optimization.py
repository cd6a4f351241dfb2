"""Pydantic schemas for optimization payloads.

Upstream collaborators send camelCase JSON (``currentValue``,
``pnlPercent``, ``maxWeight``...). Field names here are snake_case with
camelCase aliases; both spellings are accepted. Non-finite numbers are
allowed through and sanitized later by the statistics engine.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from liquidity_allocator.core.exceptions import InvalidConfigError
from liquidity_allocator.quant_engine.types import (
    OptimizationConfig,
    OptimizationConstraints,
    OptimizationObjective,
    OptimizationResult,
    Position,
    RebalanceFrequency,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PositionPayload(_CamelModel):
    """Liquidity position snapshot."""

    id: str = Field(..., min_length=1)
    current_value: float | None = Field(default=0.0, description="Current value in quote currency")
    initial_value: float | None = Field(default=0.0)
    pnl_percent: float | None = Field(default=0.0, description="PnL in percent (11.11 = +11.11%)")
    token_x: str = ""
    token_y: str = ""
    pool_address: str | None = None
    return_history: list[float | None] = Field(
        default_factory=list, description="Per-period decimal returns, oldest first"
    )

    def to_domain(self) -> Position:
        return Position(
            id=self.id,
            current_value=self.current_value,
            initial_value=self.initial_value,
            pnl_percent=self.pnl_percent,
            token_x=self.token_x,
            token_y=self.token_y,
            pool_address=self.pool_address,
            return_history=tuple(self.return_history),
        )


class ConstraintsPayload(_CamelModel):
    """Allocation constraints."""

    max_weight: float = 1.0
    min_weight: float = 0.0
    max_turnover: float = 1.0
    risk_budget: float = 1.0

    def to_domain(self) -> OptimizationConstraints:
        return OptimizationConstraints(
            max_weight=self.max_weight,
            min_weight=self.min_weight,
            max_turnover=self.max_turnover,
            risk_budget=self.risk_budget,
        )


class OptimizationConfigPayload(_CamelModel):
    """Optimization run configuration."""

    objective: str = OptimizationObjective.MAX_SHARPE.value
    constraints: ConstraintsPayload = Field(default_factory=ConstraintsPayload)
    timeframe: str = "30d"
    rebalance_frequency: str = RebalanceFrequency.WEEKLY.value
    risk_free_rate: float | None = None

    def to_domain(self) -> OptimizationConfig:
        """
        Convert to ``OptimizationConfig``.

        The timeframe is passed through unchanged; the service validates it.

        Raises:
            InvalidConfigError: Unknown objective or rebalance frequency.
        """
        try:
            objective = OptimizationObjective(self.objective)
        except ValueError:
            raise InvalidConfigError(
                message=f"Unknown objective: {self.objective!r}",
                details={"allowed": [o.value for o in OptimizationObjective]},
            ) from None
        try:
            frequency = RebalanceFrequency(self.rebalance_frequency)
        except ValueError:
            raise InvalidConfigError(
                message=f"Unknown rebalance frequency: {self.rebalance_frequency!r}",
                details={"allowed": [f.value for f in RebalanceFrequency]},
            ) from None

        return OptimizationConfig(
            objective=objective,
            constraints=self.constraints.to_domain(),
            timeframe=self.timeframe,
            rebalance_frequency=frequency,
            risk_free_rate=self.risk_free_rate,
        )


class OptimizationRequest(_CamelModel):
    """Positions plus configuration for one run."""

    positions: list[PositionPayload]
    config: OptimizationConfigPayload = Field(default_factory=OptimizationConfigPayload)

    def to_domain(self) -> tuple[list[Position], OptimizationConfig]:
        return [p.to_domain() for p in self.positions], self.config.to_domain()


class OptimizationResponse(BaseModel):
    """JSON-friendly wrapper around ``OptimizationResult``."""

    result: dict[str, Any]

    @classmethod
    def from_result(cls, result: OptimizationResult) -> OptimizationResponse:
        return cls(result=result.to_dict())
