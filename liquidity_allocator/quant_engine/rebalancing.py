"""Rebalancing planner: diff current vs. target weights into costed actions."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from liquidity_allocator.core.config import settings
from liquidity_allocator.core.logging import get_logger
from liquidity_allocator.quant_engine.types import (
    ActionTiming,
    CostEstimate,
    ImplementationPhase,
    Priority,
    RebalanceAction,
    RebalanceActionType,
    RebalanceFrequency,
    RebalancePlan,
)


logger = get_logger("quant_engine.rebalancing")

HIGH_PRIORITY_CHANGE = 0.10
MEDIUM_PRIORITY_CHANGE = 0.05
PHASE_DURATION_DAYS = 7

_PHASES: dict[Priority, tuple[str, str]] = {
    Priority.HIGH: ("Critical rebalancing actions", "Immediate (1-2 days)"),
    Priority.MEDIUM: ("Optimization improvements", "Short-term (1-2 weeks)"),
    Priority.LOW: ("Fine-tuning adjustments", "Medium-term (1 month)"),
}


def classify_action(delta: float, epsilon: float) -> RebalanceActionType:
    if delta > epsilon:
        return RebalanceActionType.INCREASE
    if delta < -epsilon:
        return RebalanceActionType.DECREASE
    return RebalanceActionType.MAINTAIN


def classify_priority(abs_delta: float) -> Priority:
    if abs_delta > HIGH_PRIORITY_CHANGE:
        return Priority.HIGH
    if abs_delta > MEDIUM_PRIORITY_CHANGE:
        return Priority.MEDIUM
    return Priority.LOW


def classify_timing(abs_delta: float) -> ActionTiming:
    if abs_delta > HIGH_PRIORITY_CHANGE:
        return ActionTiming.IMMEDIATE
    if abs_delta > MEDIUM_PRIORITY_CHANGE:
        return ActionTiming.NEXT_CYCLE
    return ActionTiming.OPPORTUNISTIC


class RebalancingPlanner:
    """Turns a target allocation into prioritized, costed actions."""

    def __init__(
        self,
        fee_per_action: float | None = None,
        slippage_rate: float | None = None,
        gas_per_action: float | None = None,
        epsilon: float | None = None,
        materiality_threshold: float | None = None,
    ):
        self.fee_per_action = settings.fee_per_action if fee_per_action is None else fee_per_action
        self.slippage_rate = settings.slippage_rate if slippage_rate is None else slippage_rate
        self.gas_per_action = settings.gas_per_action if gas_per_action is None else gas_per_action
        self.epsilon = settings.rebalance_epsilon if epsilon is None else epsilon
        self.materiality_threshold = (
            settings.materiality_threshold
            if materiality_threshold is None
            else materiality_threshold
        )

    @property
    def cost_per_action(self) -> float:
        return self.fee_per_action + self.slippage_rate + self.gas_per_action

    def estimate_costs(self, count: int, frequency: RebalanceFrequency) -> CostEstimate:
        transaction_fees = self.fee_per_action * count
        slippage_costs = self.slippage_rate * count
        gas_costs = self.gas_per_action * count
        return CostEstimate(
            transaction_fees=transaction_fees,
            slippage_costs=slippage_costs,
            gas_costs=gas_costs,
            total_costs=transaction_fees + slippage_costs + gas_costs,
            frequency=RebalanceFrequency(frequency),
        )

    def plan(
        self,
        position_ids: Sequence[str],
        current_weights: np.ndarray,
        target_weights: np.ndarray,
        total_value: float,
        frequency: RebalanceFrequency = RebalanceFrequency.WEEKLY,
    ) -> RebalancePlan:
        """
        Build the rebalancing plan.

        Actions whose size is below the materiality threshold (as a share
        of total value) are dropped. The rest are ordered by priority, then
        by amount, and grouped into phases of about a week each.
        """
        current = np.asarray(current_weights, dtype=float)
        target = np.asarray(target_weights, dtype=float)

        actions: list[RebalanceAction] = []
        for position_id, cur, tgt in zip(position_ids, current, target):
            delta = float(tgt - cur)
            abs_delta = abs(delta)
            if abs_delta < self.materiality_threshold:
                continue
            actions.append(
                RebalanceAction(
                    position_id=position_id,
                    action=classify_action(delta, self.epsilon),
                    current_weight=float(cur),
                    target_weight=float(tgt),
                    amount_change=abs_delta * total_value,
                    priority=classify_priority(abs_delta),
                    timing=classify_timing(abs_delta),
                    estimated_cost=self.cost_per_action,
                )
            )

        actions.sort(key=lambda a: (a.priority.rank, -a.amount_change, a.position_id))
        plan_turnover = 0.5 * sum(abs(a.target_weight - a.current_weight) for a in actions)
        phases = self._phases(actions)

        logger.debug(
            f"Rebalancing plan: {len(actions)} actions, turnover={plan_turnover:.4f}"
        )

        return RebalancePlan(
            required=bool(actions),
            current_allocations=dict(zip(position_ids, map(float, current))),
            target_allocations=dict(zip(position_ids, map(float, target))),
            actions=tuple(actions),
            estimated_costs=self.estimate_costs(len(actions), frequency),
            turnover=plan_turnover,
            phases=phases,
            total_cost=sum(a.estimated_cost for a in actions),
            expected_duration_days=len(phases) * PHASE_DURATION_DAYS,
        )

    @staticmethod
    def _phases(actions: list[RebalanceAction]) -> tuple[ImplementationPhase, ...]:
        phases: list[ImplementationPhase] = []
        for priority in (Priority.HIGH, Priority.MEDIUM, Priority.LOW):
            group = tuple(a for a in actions if a.priority == priority)
            if not group:
                continue
            description, timeline = _PHASES[priority]
            phases.append(
                ImplementationPhase(
                    phase_number=len(phases) + 1,
                    description=description,
                    timeline=timeline,
                    actions=group,
                )
            )
        return tuple(phases)
