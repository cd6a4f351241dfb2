"""
Core type definitions for the allocation engine.

All dataclasses are frozen; results are value objects and are never mutated
after construction. Categorical fields are ``str`` enums so that they
serialize as their plain values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

import numpy as np


class OptimizationObjective(str, Enum):
    """Allocation objective selected by the caller."""
    MAX_SHARPE = "max_sharpe"
    MIN_RISK = "min_risk"
    MAX_RETURN = "max_return"
    MEAN_REVERSION = "mean_reversion"
    RISK_PARITY = "risk_parity"


class Timeframe(str, Enum):
    """Lookback window applied to position return histories."""
    H24 = "24h"
    D7 = "7d"
    D30 = "30d"
    D90 = "90d"
    Y1 = "1y"
    ALL = "all"

    @property
    def lookback(self) -> int | None:
        """Number of most recent samples to use (None = full history)."""
        return _TIMEFRAME_LOOKBACK[self]


_TIMEFRAME_LOOKBACK: dict[Timeframe, int | None] = {
    Timeframe.H24: 1,
    Timeframe.D7: 7,
    Timeframe.D30: 30,
    Timeframe.D90: 90,
    Timeframe.Y1: 365,
    Timeframe.ALL: None,
}


class RebalanceFrequency(str, Enum):
    """How often the plan is meant to be executed."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class OptimizationStatus(str, Enum):
    """Outcome of the constrained optimizer."""
    OPTIMAL = "optimal"
    SUBOPTIMAL = "suboptimal"
    INFEASIBLE = "infeasible"


class InfeasibilityReason(str, Enum):
    """First violated rule when no allocation satisfies the constraints."""
    MIN_EXCEEDS_MAX = "min_exceeds_max"
    MIN_WEIGHT_SUM = "min_weight_sum"
    TURNOVER_CAP = "turnover_cap"
    RISK_BUDGET = "risk_budget"


class RebalanceActionType(str, Enum):
    """Direction of a rebalancing action."""
    INCREASE = "increase"
    DECREASE = "decrease"
    MAINTAIN = "maintain"


class Priority(str, Enum):
    """Urgency of an action or recommendation."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class ActionTiming(str, Enum):
    """When an action should be executed."""
    IMMEDIATE = "immediate"
    NEXT_CYCLE = "next_cycle"
    OPPORTUNISTIC = "opportunistic"


class RecommendationType(str, Enum):
    """Kinds of qualitative guidance."""
    CONSTRAINT_RELAXATION = "constraint_relaxation"
    RISK_REDUCTION = "risk_reduction"
    EFFICIENCY_IMPROVEMENT = "efficiency_improvement"
    DIVERSIFICATION = "diversification"


# =============================================================================
# Inputs
# =============================================================================


@dataclass(frozen=True)
class Position:
    """
    Snapshot of a liquidity position supplied by the caller.

    ``pnl_percent`` is in percent units (11.11 means +11.11%).
    ``return_history`` holds per-period decimal returns, oldest first.
    """
    id: str
    current_value: float
    initial_value: float = 0.0
    pnl_percent: float = 0.0
    token_x: str = ""
    token_y: str = ""
    pool_address: str | None = None
    return_history: tuple[float, ...] = ()

    @property
    def token_pair(self) -> str:
        if not self.token_x and not self.token_y:
            return ""
        return f"{self.token_x}/{self.token_y}"


@dataclass(frozen=True)
class OptimizationConstraints:
    """Linear constraints on the target allocation."""
    max_weight: float = 1.0
    min_weight: float = 0.0
    max_turnover: float = 1.0
    risk_budget: float = 1.0

    def to_dict(self) -> dict[str, float]:
        return {
            "max_weight": self.max_weight,
            "min_weight": self.min_weight,
            "max_turnover": self.max_turnover,
            "risk_budget": self.risk_budget,
        }


@dataclass(frozen=True)
class OptimizationConfig:
    """
    Configuration for a single optimization run.

    ``timeframe`` is kept as supplied so the orchestrator can reject
    unknown values with ``InvalidTimeframeError``.
    """
    objective: OptimizationObjective = OptimizationObjective.MAX_SHARPE
    constraints: OptimizationConstraints = field(default_factory=OptimizationConstraints)
    timeframe: str = Timeframe.D30.value
    rebalance_frequency: RebalanceFrequency = RebalanceFrequency.WEEKLY
    risk_free_rate: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict (also used for cache keys)."""
        timeframe = self.timeframe.value if isinstance(self.timeframe, Timeframe) else self.timeframe
        return {
            "objective": OptimizationObjective(self.objective).value,
            "constraints": self.constraints.to_dict(),
            "timeframe": timeframe,
            "rebalance_frequency": RebalanceFrequency(self.rebalance_frequency).value,
            "risk_free_rate": self.risk_free_rate,
        }


# =============================================================================
# Intermediate artifacts
# =============================================================================


@dataclass(frozen=True)
class PortfolioStatistics:
    """
    Return and risk estimates for N positions.

    ``covariance`` is symmetric with a non-negative diagonal.
    ``pnl`` holds decimal pnl per position (0.1111 for +11.11%).
    """
    position_ids: tuple[str, ...]
    expected_returns: np.ndarray
    covariance: np.ndarray
    pnl: np.ndarray
    sample_counts: tuple[int, ...]

    @property
    def n_assets(self) -> int:
        return len(self.position_ids)


@dataclass(frozen=True)
class AllocationSolution:
    """Raw output of the constrained optimizer."""
    weights: np.ndarray
    status: OptimizationStatus
    iterations: int
    converged: bool
    objective_value: float
    reason: InfeasibilityReason | None = None
    repaired: bool = False
    cap_relaxed: bool = False
    notes: tuple[str, ...] = ()


# =============================================================================
# Outputs
# =============================================================================


@dataclass(frozen=True)
class PortfolioWeight:
    """Target weight for one position."""
    position_id: str
    weight: float
    current_weight: float = 0.0
    risk_contribution: float | None = None
    rationale: str = ""

    @property
    def weight_change(self) -> float:
        return self.weight - self.current_weight

    def to_dict(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "weight": round(self.weight, 6),
            "current_weight": round(self.current_weight, 6),
            "weight_change": round(self.weight_change, 6),
            "risk_contribution": (
                round(self.risk_contribution, 6) if self.risk_contribution is not None else None
            ),
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class RebalanceAction:
    """A single costed rebalancing step."""
    position_id: str
    action: RebalanceActionType
    current_weight: float
    target_weight: float
    amount_change: float
    priority: Priority
    timing: ActionTiming
    estimated_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "position_id": self.position_id,
            "action": self.action.value,
            "current_weight": round(self.current_weight, 6),
            "target_weight": round(self.target_weight, 6),
            "amount_change": round(self.amount_change, 2),
            "priority": self.priority.value,
            "timing": self.timing.value,
            "estimated_cost": round(self.estimated_cost, 6),
        }


@dataclass(frozen=True)
class CostEstimate:
    """Estimated cost of executing a plan."""
    transaction_fees: float
    slippage_costs: float
    gas_costs: float
    total_costs: float
    frequency: RebalanceFrequency

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_fees": round(self.transaction_fees, 6),
            "slippage_costs": round(self.slippage_costs, 6),
            "gas_costs": round(self.gas_costs, 6),
            "total_costs": round(self.total_costs, 6),
            "frequency": self.frequency.value,
        }


@dataclass(frozen=True)
class ImplementationPhase:
    """Group of actions executed together."""
    phase_number: int
    description: str
    timeline: str
    actions: tuple[RebalanceAction, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_number": self.phase_number,
            "description": self.description,
            "timeline": self.timeline,
            "actions": [a.position_id for a in self.actions],
        }


@dataclass(frozen=True)
class RebalancePlan:
    """
    Diff between current and target allocation.

    Allocation maps are read-only views.
    """
    required: bool
    current_allocations: Mapping[str, float]
    target_allocations: Mapping[str, float]
    actions: tuple[RebalanceAction, ...]
    estimated_costs: CostEstimate
    turnover: float
    phases: tuple[ImplementationPhase, ...] = ()
    total_cost: float = 0.0
    expected_duration_days: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "current_allocations", MappingProxyType(dict(self.current_allocations)))
        object.__setattr__(self, "target_allocations", MappingProxyType(dict(self.target_allocations)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "required": self.required,
            "current_allocations": {k: round(v, 6) for k, v in self.current_allocations.items()},
            "target_allocations": {k: round(v, 6) for k, v in self.target_allocations.items()},
            "actions": [a.to_dict() for a in self.actions],
            "estimated_costs": self.estimated_costs.to_dict(),
            "turnover": round(self.turnover, 6),
            "phases": [p.to_dict() for p in self.phases],
            "total_cost": round(self.total_cost, 6),
            "expected_duration_days": self.expected_duration_days,
        }


@dataclass(frozen=True)
class CurrentMetrics:
    """Risk/return profile of the holdings before rebalancing."""
    total_value: float
    weighted_return: float
    portfolio_risk: float
    sharpe_ratio: float
    efficiency: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_value": round(self.total_value, 2),
            "weighted_return": round(self.weighted_return, 6),
            "portfolio_risk": round(self.portfolio_risk, 6),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "efficiency": round(self.efficiency, 4),
        }


@dataclass(frozen=True)
class OptimizationMetrics:
    """
    Target allocation measured against the current holdings.

    ``risk_reduction`` and ``return_enhancement`` are relative gains floored
    at zero. ``improvement_score`` blends them 40/60 on a 0-100 scale.
    ``diversification_improvement`` is the drop in Herfindahl concentration
    and is negative when the target is more concentrated.
    """
    improvement_score: float
    risk_reduction: float
    return_enhancement: float
    diversification_improvement: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "improvement_score": round(self.improvement_score, 4),
            "risk_reduction": round(self.risk_reduction, 6),
            "return_enhancement": round(self.return_enhancement, 6),
            "diversification_improvement": round(self.diversification_improvement, 6),
        }


@dataclass(frozen=True)
class Recommendation:
    """Qualitative guidance derived from the optimization outcome."""
    id: str
    type: RecommendationType
    priority: Priority
    action: str
    rationale: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value,
            "action": self.action,
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class OptimizationResult:
    """
    Assembled outcome of ``optimize_portfolio``.

    ``optimal_weights`` sum to 1 unless ``status`` is infeasible, in which
    case they mirror the current allocation.
    """
    objective: OptimizationObjective
    status: OptimizationStatus
    optimal_weights: tuple[PortfolioWeight, ...]
    expected_return: float
    expected_risk: float
    sharpe_ratio: float
    efficiency: float
    iterations: int
    current_metrics: CurrentMetrics
    rebalancing: RebalancePlan
    recommendations: tuple[Recommendation, ...]
    infeasibility_reason: InfeasibilityReason | None = None
    optimization_metrics: OptimizationMetrics | None = None
    generated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def rebalancing_actions(self) -> tuple[RebalanceAction, ...]:
        return self.rebalancing.actions

    def weights_by_id(self) -> dict[str, float]:
        return {w.position_id: w.weight for w in self.optimal_weights}

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "objective": self.objective.value,
            "status": self.status.value,
            "optimal_weights": [w.to_dict() for w in self.optimal_weights],
            "expected_return": round(self.expected_return, 6),
            "expected_risk": round(self.expected_risk, 6),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "efficiency": round(self.efficiency, 4),
            "iterations": self.iterations,
            "infeasibility_reason": (
                self.infeasibility_reason.value if self.infeasibility_reason else None
            ),
            "current_metrics": self.current_metrics.to_dict(),
            "optimization_metrics": (
                self.optimization_metrics.to_dict() if self.optimization_metrics else None
            ),
            "rebalancing": self.rebalancing.to_dict(),
            "recommendations": [r.to_dict() for r in self.recommendations],
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass(frozen=True)
class OptimizationHistoryEntry:
    """Record of a computed (not cached) optimization run."""
    timestamp: datetime
    config: OptimizationConfig
    result: OptimizationResult
