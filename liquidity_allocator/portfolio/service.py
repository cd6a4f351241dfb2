"""Portfolio optimization service.

Coordinates one optimization run:
- Input validation
- Result cache lookup
- Statistics estimation
- Constrained optimization (plus the unconstrained max-Sharpe reference)
- Rebalancing plan
- Recommendations

Results are memoized per (positions, config) in a bounded LRU cache and
every computed run is appended to a bounded in-memory history.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from datetime import UTC, datetime
from typing import Any, Sequence

import numpy as np

from liquidity_allocator.cache.cache import LRUCache, hash_payload
from liquidity_allocator.cache.metrics import cache_metrics
from liquidity_allocator.core.config import settings
from liquidity_allocator.core.exceptions import (
    EmptyPortfolioError,
    InvalidConfigError,
    InvalidTimeframeError,
)
from liquidity_allocator.core.logging import get_logger, optimization_run
from liquidity_allocator.quant_engine.optimizer import (
    ConstrainedOptimizer,
    validate_constraints,
)
from liquidity_allocator.quant_engine.rebalancing import RebalancingPlanner
from liquidity_allocator.quant_engine.recommendations import (
    efficiency_score,
    generate_recommendations,
)
from liquidity_allocator.quant_engine.statistics import (
    estimate_statistics,
    herfindahl_index,
    portfolio_return,
    portfolio_risk,
    position_values,
    risk_contributions,
    sanitize_value,
    sharpe_ratio,
    weights_from_values,
)
from liquidity_allocator.quant_engine.types import (
    AllocationSolution,
    CurrentMetrics,
    OptimizationConfig,
    OptimizationHistoryEntry,
    OptimizationMetrics,
    OptimizationObjective,
    OptimizationResult,
    OptimizationStatus,
    PortfolioWeight,
    Position,
    RebalanceFrequency,
    Timeframe,
)


logger = get_logger("portfolio.service")

CACHE_PREFIX = "portfolio_optimization"
RISK_REDUCTION_WEIGHT = 0.4
RETURN_ENHANCEMENT_WEIGHT = 0.6

_instance_ids = itertools.count(1)

_OBJECTIVE_RATIONALE: dict[OptimizationObjective, str] = {
    OptimizationObjective.MAX_SHARPE: "improve risk-adjusted return",
    OptimizationObjective.MIN_RISK: "lower portfolio volatility",
    OptimizationObjective.MAX_RETURN: "raise expected return",
    OptimizationObjective.MEAN_REVERSION: "lean into recent underperformers",
    OptimizationObjective.RISK_PARITY: "equalize risk contributions",
}


def _optimization_cache_key(
    positions: Sequence[Position], config: OptimizationConfig
) -> str:
    snapshot = sorted(
        (p.id, sanitize_value(p.current_value), sanitize_value(p.pnl_percent))
        for p in positions
    )
    return hash_payload({"positions": snapshot, "config": config.to_dict()})


def _comparison_metrics(
    current: np.ndarray,
    target: np.ndarray,
    returns: np.ndarray,
    cov: np.ndarray,
) -> OptimizationMetrics:
    current_risk = portfolio_risk(current, cov)
    current_return = portfolio_return(current, returns)

    risk_reduction = 0.0
    if current_risk > 1e-12:
        risk_reduction = max(0.0, (current_risk - portfolio_risk(target, cov)) / current_risk)

    return_enhancement = 0.0
    if abs(current_return) > 1e-12:
        gain = portfolio_return(target, returns) - current_return
        return_enhancement = max(0.0, gain / abs(current_return))

    return OptimizationMetrics(
        improvement_score=100.0 * (
            RISK_REDUCTION_WEIGHT * risk_reduction
            + RETURN_ENHANCEMENT_WEIGHT * return_enhancement
        ),
        risk_reduction=risk_reduction,
        return_enhancement=return_enhancement,
        diversification_improvement=herfindahl_index(current) - herfindahl_index(target),
    )


def _weight_rationale(
    objective: OptimizationObjective,
    current: float,
    target: float,
    epsilon: float,
) -> str:
    goal = _OBJECTIVE_RATIONALE[objective]
    if target - current > epsilon:
        return f"Increase from {current:.1%} to {target:.1%} to {goal}"
    if current - target > epsilon:
        return f"Decrease from {current:.1%} to {target:.1%} to {goal}"
    return f"Hold at {target:.1%}"


class PortfolioOptimizationService:
    """Entry point for portfolio optimization runs."""

    def __init__(
        self,
        optimizer: ConstrainedOptimizer | None = None,
        planner: RebalancingPlanner | None = None,
        cache_max_entries: int | None = None,
        history_max_entries: int | None = None,
    ):
        self.optimizer = optimizer or ConstrainedOptimizer()
        self.planner = planner or RebalancingPlanner()
        self.cache_prefix = f"{CACHE_PREFIX}-{next(_instance_ids)}"
        self._cache: LRUCache[OptimizationResult] = LRUCache(
            prefix=self.cache_prefix,
            max_entries=cache_max_entries or settings.cache_max_entries,
        )
        self._history: deque[OptimizationHistoryEntry] = deque(
            maxlen=history_max_entries or settings.history_max_entries
        )
        self._history_lock = threading.Lock()

    async def optimize_portfolio(
        self,
        positions: Sequence[Position],
        config: OptimizationConfig | None = None,
        force_refresh: bool = False,
    ) -> OptimizationResult:
        """
        Optimize the allocation across ``positions``.

        Args:
            positions: Position snapshots (at least one).
            config: Objective, constraints, timeframe and frequency.
            force_refresh: Skip the cache lookup and recompute.

        Returns:
            OptimizationResult (cached for identical inputs).

        Raises:
            EmptyPortfolioError: If no positions are given.
            InvalidTimeframeError: If the timeframe is not recognized.
            InvalidConfigError: If objective or frequency is not recognized,
                or a constraint is NaN or infinite.
        """
        return self.optimize(positions, config, force_refresh=force_refresh)

    def optimize(
        self,
        positions: Sequence[Position],
        config: OptimizationConfig | None = None,
        force_refresh: bool = False,
    ) -> OptimizationResult:
        """Synchronous body of ``optimize_portfolio``."""
        config = config or OptimizationConfig()
        positions = list(positions)
        if not positions:
            raise EmptyPortfolioError()

        objective, timeframe, frequency = self._validate_config(config)
        key = _optimization_cache_key(positions, config)

        if not force_refresh:
            cached = self._cache.get(key)
            if cached is not None:
                logger.info(f"Optimization cache hit for {len(positions)} positions")
                return cached

        with optimization_run() as run_id:
            logger.info(
                f"Optimization started: run={run_id}, positions={len(positions)}, "
                f"objective={objective.value}, timeframe={timeframe.value}"
            )
            result = self._run(positions, config, objective, timeframe, frequency)
            logger.info(
                f"Optimization finished: status={result.status.value}, "
                f"sharpe={result.sharpe_ratio:.4f}, "
                f"actions={len(result.rebalancing_actions)}"
            )

        self._cache.set(key, result)
        with self._history_lock:
            self._history.append(
                OptimizationHistoryEntry(
                    timestamp=result.generated_at,
                    config=config,
                    result=result,
                )
            )
        return result

    def _validate_config(
        self, config: OptimizationConfig
    ) -> tuple[OptimizationObjective, Timeframe, RebalanceFrequency]:
        try:
            timeframe = Timeframe(config.timeframe)
        except ValueError:
            raise InvalidTimeframeError(
                message=f"Invalid timeframe: {config.timeframe!r}",
                details={
                    "timeframe": str(config.timeframe),
                    "allowed": [t.value for t in Timeframe],
                },
            ) from None

        try:
            objective = OptimizationObjective(config.objective)
            frequency = RebalanceFrequency(config.rebalance_frequency)
        except ValueError as exc:
            raise InvalidConfigError(message=str(exc)) from None

        validate_constraints(config.constraints)

        return objective, timeframe, frequency

    def _run(
        self,
        positions: list[Position],
        config: OptimizationConfig,
        objective: OptimizationObjective,
        timeframe: Timeframe,
        frequency: RebalanceFrequency,
    ) -> OptimizationResult:
        constraints = config.constraints
        risk_free_rate = (
            settings.risk_free_rate if config.risk_free_rate is None else config.risk_free_rate
        )

        stats = estimate_statistics(positions, timeframe)
        returns, cov = stats.expected_returns, stats.covariance
        values = position_values(positions)
        total_value = float(values.sum())
        current = weights_from_values(values)

        solution = self.optimizer.optimize(
            stats, objective, constraints, current, risk_free_rate
        )
        reference = self.optimizer.optimize(
            stats,
            OptimizationObjective.MAX_SHARPE,
            constraints,
            current,
            risk_free_rate,
            enforce_limits=False,
        )
        reference_sharpe = sharpe_ratio(reference.weights, returns, cov, risk_free_rate)

        target = solution.weights
        target_sharpe = sharpe_ratio(target, returns, cov, risk_free_rate)
        efficiency = efficiency_score(target_sharpe, reference_sharpe)

        current_sharpe = sharpe_ratio(current, returns, cov, risk_free_rate)
        current_metrics = CurrentMetrics(
            total_value=total_value,
            weighted_return=portfolio_return(current, returns),
            portfolio_risk=portfolio_risk(current, cov),
            sharpe_ratio=current_sharpe,
            efficiency=efficiency_score(current_sharpe, reference_sharpe),
        )

        plan = self.planner.plan(
            stats.position_ids, current, target, total_value, frequency
        )
        recommendations = generate_recommendations(
            status=solution.status,
            constraints=constraints,
            n_positions=stats.n_assets,
            sharpe=target_sharpe,
            efficiency=efficiency,
            value_shares=dict(zip(stats.position_ids, map(float, current))),
            reason=solution.reason,
            cap_relaxed=solution.cap_relaxed,
        )

        return OptimizationResult(
            objective=objective,
            status=solution.status,
            optimal_weights=self._portfolio_weights(
                stats.position_ids, objective, current, solution, cov
            ),
            expected_return=portfolio_return(target, returns),
            expected_risk=portfolio_risk(target, cov),
            sharpe_ratio=target_sharpe,
            efficiency=efficiency,
            iterations=solution.iterations,
            current_metrics=current_metrics,
            rebalancing=plan,
            recommendations=recommendations,
            infeasibility_reason=solution.reason,
            optimization_metrics=_comparison_metrics(current, target, returns, cov),
            generated_at=datetime.now(UTC),
        )

    def _portfolio_weights(
        self,
        position_ids: Sequence[str],
        objective: OptimizationObjective,
        current: np.ndarray,
        solution: AllocationSolution,
        cov: np.ndarray,
    ) -> tuple[PortfolioWeight, ...]:
        contributions = risk_contributions(solution.weights, cov)
        infeasible = solution.status == OptimizationStatus.INFEASIBLE
        epsilon = self.planner.epsilon
        return tuple(
            PortfolioWeight(
                position_id=position_id,
                weight=float(weight),
                current_weight=float(cur),
                risk_contribution=float(rc),
                rationale=(
                    "Held at current weight: constraints are infeasible"
                    if infeasible
                    else _weight_rationale(objective, float(cur), float(weight), epsilon)
                ),
            )
            for position_id, weight, cur, rc in zip(
                position_ids, solution.weights, current, contributions
            )
        )

    def get_optimization_history(self, limit: int | None = None) -> list[OptimizationHistoryEntry]:
        """Computed runs, oldest first (most recent ``limit`` when given)."""
        with self._history_lock:
            entries = list(self._history)
        return entries[-limit:] if limit else entries

    def clear_cache(self) -> int:
        """Drop all cached results; returns the number removed."""
        return self._cache.clear()

    def get_cache_stats(self) -> dict[str, Any]:
        """Entry count plus hit/miss metrics for this instance's result cache."""
        metrics = cache_metrics.get_stats(self.cache_prefix).get(self.cache_prefix, {})
        return {
            "entries": len(self._cache),
            "max_entries": self._cache.max_entries,
            "history_entries": len(self._history),
            **metrics,
        }


# =============================================================================
# SINGLETON
# =============================================================================

_optimization_service: PortfolioOptimizationService | None = None
_service_lock = threading.Lock()


def get_optimization_service() -> PortfolioOptimizationService:
    """Get singleton PortfolioOptimizationService instance."""
    global _optimization_service
    with _service_lock:
        if _optimization_service is None:
            _optimization_service = PortfolioOptimizationService()
        return _optimization_service


def reset_optimization_service() -> None:
    """Drop the singleton; the next call builds a fresh service."""
    global _optimization_service
    with _service_lock:
        if _optimization_service is not None:
            _optimization_service.clear_cache()
            cache_metrics.reset(_optimization_service.cache_prefix)
        _optimization_service = None


async def optimize_portfolio(
    positions: Sequence[Position],
    config: OptimizationConfig | None = None,
    force_refresh: bool = False,
) -> OptimizationResult:
    """Optimize ``positions`` with the process-wide service."""
    return await get_optimization_service().optimize_portfolio(
        positions, config, force_refresh=force_refresh
    )
