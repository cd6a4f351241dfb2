"""
Decision-support recommendations derived from an optimization outcome.

Rules are evaluated in a fixed order and each emits at most one
recommendation:

1. infeasible constraints          -> constraint_relaxation (high)
2. max_weight cap raised to 1/N    -> constraint_relaxation (medium)
3. negative Sharpe (feasible only) -> risk_reduction (high)
4. low efficiency (feasible only)  -> efficiency_improvement (medium)
5. concentrated holding            -> diversification (high)
"""

from __future__ import annotations

from typing import Mapping

from liquidity_allocator.core.config import settings
from liquidity_allocator.quant_engine.types import (
    InfeasibilityReason,
    OptimizationConstraints,
    OptimizationStatus,
    Priority,
    Recommendation,
    RecommendationType,
)


_REASON_TEXT: dict[InfeasibilityReason, str] = {
    InfeasibilityReason.MIN_EXCEEDS_MAX: "minimum weight exceeds maximum weight",
    InfeasibilityReason.MIN_WEIGHT_SUM: "minimum weight times position count exceeds 100%",
    InfeasibilityReason.TURNOVER_CAP: "turnover cap cannot be met",
    InfeasibilityReason.RISK_BUDGET: "risk budget cannot be met",
}

_REASON_ACTION: dict[InfeasibilityReason, str] = {
    InfeasibilityReason.MIN_EXCEEDS_MAX: "Lower min_weight below max_weight",
    InfeasibilityReason.MIN_WEIGHT_SUM: "Lower min_weight so that all minimums fit in the portfolio",
    InfeasibilityReason.TURNOVER_CAP: "Raise max_turnover to allow a feasible rebalance",
    InfeasibilityReason.RISK_BUDGET: "Raise risk_budget above the minimum achievable risk",
}


def efficiency_score(achieved_sharpe: float, reference_sharpe: float) -> float:
    """
    Achieved Sharpe as a fraction of the unconstrained max-Sharpe reference.

    Clamped to [0, 1]. When the reference is not positive the ratio carries
    no meaning: matching or beating it scores 1.0, falling short scores 0.0.
    """
    if reference_sharpe <= 0:
        return 1.0 if achieved_sharpe >= reference_sharpe - 1e-9 else 0.0
    return min(max(achieved_sharpe / reference_sharpe, 0.0), 1.0)


class _Builder:
    def __init__(self) -> None:
        self.items: list[Recommendation] = []

    def add(
        self,
        rec_type: RecommendationType,
        priority: Priority,
        action: str,
        rationale: str,
    ) -> None:
        rec_id = f"rec-{len(self.items) + 1}-{rec_type.value}"
        self.items.append(
            Recommendation(
                id=rec_id,
                type=rec_type,
                priority=priority,
                action=action,
                rationale=rationale,
            )
        )


def generate_recommendations(
    status: OptimizationStatus,
    constraints: OptimizationConstraints,
    n_positions: int,
    sharpe: float,
    efficiency: float,
    value_shares: Mapping[str, float],
    reason: InfeasibilityReason | None = None,
    cap_relaxed: bool = False,
    concentration_limit: float | None = None,
    efficiency_floor: float | None = None,
) -> tuple[Recommendation, ...]:
    """
    Build the ordered recommendation list.

    Args:
        status: Optimizer status.
        constraints: Constraints the run was solved under.
        n_positions: Number of positions in the portfolio.
        sharpe: Sharpe ratio of the target allocation.
        efficiency: ``efficiency_score`` of the target allocation.
        value_shares: Current value share per position id.
        reason: First violated rule when ``status`` is infeasible.
        cap_relaxed: Whether max_weight was raised to 1/N.

    Returns:
        Recommendations with ids ``rec-<n>-<type>`` in emission order.
    """
    concentration_limit = (
        settings.concentration_limit if concentration_limit is None else concentration_limit
    )
    efficiency_floor = settings.efficiency_floor if efficiency_floor is None else efficiency_floor
    feasible = status != OptimizationStatus.INFEASIBLE
    recs = _Builder()

    if not feasible:
        reason = reason or InfeasibilityReason.MIN_EXCEEDS_MAX
        recs.add(
            RecommendationType.CONSTRAINT_RELAXATION,
            Priority.HIGH,
            _REASON_ACTION[reason],
            f"Constraints are infeasible: {_REASON_TEXT[reason]} "
            f"(min_weight={constraints.min_weight:.2%}, "
            f"max_weight={constraints.max_weight:.2%}, "
            f"max_turnover={constraints.max_turnover:.2%}, "
            f"risk_budget={constraints.risk_budget:.2%}). "
            "Current allocation is kept unchanged.",
        )

    if cap_relaxed:
        recs.add(
            RecommendationType.CONSTRAINT_RELAXATION,
            Priority.MEDIUM,
            f"Raise max_weight to at least {1.0 / n_positions:.2%}",
            f"max_weight={constraints.max_weight:.2%} across {n_positions} positions "
            "cannot sum to 100%; the cap was raised to an equal split.",
        )

    if feasible and sharpe < 0:
        recs.add(
            RecommendationType.RISK_REDUCTION,
            Priority.HIGH,
            "Reduce exposure to positions with negative risk-adjusted returns",
            f"Target allocation has a negative Sharpe ratio ({sharpe:.2f}); "
            "expected return is below the risk-free rate.",
        )

    if feasible and efficiency < efficiency_floor:
        recs.add(
            RecommendationType.EFFICIENCY_IMPROVEMENT,
            Priority.MEDIUM,
            "Loosen constraints to move closer to the efficient frontier",
            f"Allocation reaches {efficiency:.0%} of the best attainable Sharpe ratio.",
        )

    concentrated = [
        (position_id, share)
        for position_id, share in value_shares.items()
        if share > concentration_limit
    ]
    if concentrated:
        position_id, share = max(concentrated, key=lambda item: item[1])
        recs.add(
            RecommendationType.DIVERSIFICATION,
            Priority.HIGH,
            f"Diversify away from position {position_id}",
            f"Position {position_id} holds {share:.1%} of portfolio value, "
            f"above the {concentration_limit:.0%} concentration limit.",
        )

    return tuple(recs.items)
