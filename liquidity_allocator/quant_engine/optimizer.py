"""
Constrained portfolio optimizer.

Solves, for the selected objective:

    optimize f(w)

Subject to:
- Budget:      Σ w_i = 1
- Box:         min_weight <= w_i <= max_weight
- Turnover:    ½ Σ |w_i - w_current,i| <= max_turnover
- Risk budget: sqrt(w' Σ w) <= risk_budget

min_risk and max_sharpe run on the projected-gradient QP solver;
risk_parity solves a log-barrier program with scipy; linear objectives
(max_return, mean_reversion) use the greedy LP allocation. Turnover and risk budget are
enforced afterwards by blending toward a feasible anchor, with the blend
factor found by bisection.
"""

from __future__ import annotations

import math
from typing import Callable

import numpy as np
from scipy.optimize import minimize

from liquidity_allocator.core.config import settings
from liquidity_allocator.core.exceptions import InvalidConfigError
from liquidity_allocator.core.logging import get_logger
from liquidity_allocator.quant_engine.objectives import Objective, build_objective
from liquidity_allocator.quant_engine.solver import (
    project_capped_simplex,
    regularize_covariance,
    solve_linear,
    solve_qp,
)
from liquidity_allocator.quant_engine.statistics import (
    portfolio_risk,
    sharpe_ratio,
    turnover,
)
from liquidity_allocator.quant_engine.types import (
    AllocationSolution,
    InfeasibilityReason,
    OptimizationConstraints,
    OptimizationObjective,
    OptimizationStatus,
    PortfolioStatistics,
)


logger = get_logger("quant_engine.optimizer")

BISECTION_STEPS = 60
SHARPE_LAMBDA_FLOOR = 1e-4
SHARPE_TOLERANCE = 1e-10


def validate_constraints(constraints: OptimizationConstraints) -> None:
    """Raise InvalidConfigError unless every limit is a finite number."""
    for name, value in constraints.to_dict().items():
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = math.nan
        if not math.isfinite(number):
            raise InvalidConfigError(
                message=f"Constraint {name} must be a finite number, got {value!r}",
                details={"field": name, "value": str(value)},
            )


def check_feasibility(
    constraints: OptimizationConstraints, n_assets: int
) -> InfeasibilityReason | None:
    """First structural rule that makes the box+simplex empty, if any."""
    if constraints.min_weight > constraints.max_weight:
        return InfeasibilityReason.MIN_EXCEEDS_MAX
    if constraints.min_weight * n_assets > 1.0 + 1e-12:
        return InfeasibilityReason.MIN_WEIGHT_SUM
    return None


def _blend(start: np.ndarray, anchor: np.ndarray, alpha: float) -> np.ndarray:
    return (1.0 - alpha) * start + alpha * anchor


def bisect_blend(
    start: np.ndarray,
    anchor: np.ndarray,
    feasible: Callable[[np.ndarray], bool],
) -> float | None:
    """
    Smallest blend factor α with ``feasible((1-α)·start + α·anchor)``.

    The feasible factors of a convex constraint along a segment form an
    interval; when the anchor is feasible that interval ends at 1, so
    bisection on [0, 1] finds its left edge. Returns None when even the
    anchor is infeasible.
    """
    if feasible(start):
        return 0.0
    if not feasible(anchor):
        return None

    lo, hi = 0.0, 1.0
    for _ in range(BISECTION_STEPS):
        mid = 0.5 * (lo + hi)
        if feasible(_blend(start, anchor, mid)):
            hi = mid
        else:
            lo = mid
    return hi


class ConstrainedOptimizer:
    """Allocation solver over the capped simplex with turnover/risk limits."""

    def __init__(
        self,
        max_iterations: int | None = None,
        tolerance: float | None = None,
        outer_max_iterations: int | None = None,
        constraint_tolerance: float | None = None,
        simplex_tolerance: float | None = None,
    ):
        self.max_iterations = max_iterations or settings.solver_max_iterations
        self.tolerance = tolerance or settings.solver_tolerance
        self.outer_max_iterations = outer_max_iterations or settings.outer_max_iterations
        self.constraint_tolerance = constraint_tolerance or settings.constraint_tolerance
        self.simplex_tolerance = simplex_tolerance or settings.simplex_tolerance

    def optimize(
        self,
        stats: PortfolioStatistics,
        objective: OptimizationObjective | str,
        constraints: OptimizationConstraints,
        current_weights: np.ndarray,
        risk_free_rate: float = 0.0,
        enforce_limits: bool = True,
    ) -> AllocationSolution:
        """
        Compute the target allocation.

        Parameters
        ----------
        stats : PortfolioStatistics
            Expected returns and covariance.
        objective : OptimizationObjective
            Objective to optimize.
        constraints : OptimizationConstraints
            Box, turnover and risk-budget limits.
        current_weights : np.ndarray
            Allocation before rebalancing (turnover reference).
        risk_free_rate : float
            Used by the Sharpe objective.
        enforce_limits : bool
            When False only the box+simplex is applied (used for reference
            solutions).

        Returns
        -------
        AllocationSolution
            Weights and status. Infeasible solutions carry the current
            weights.

        Raises
        ------
        InvalidConfigError
            If a constraint is NaN or infinite.
        """
        validate_constraints(constraints)
        n = stats.n_assets
        current = np.asarray(current_weights, dtype=float)
        strategy = build_objective(objective, stats, risk_free_rate)

        if n == 1:
            weights = np.ones(1)
            return AllocationSolution(
                weights=weights,
                status=OptimizationStatus.OPTIMAL,
                iterations=0,
                converged=True,
                objective_value=strategy.evaluate(weights),
            )

        reason = check_feasibility(constraints, n)
        if reason is not None:
            logger.info(f"Constraints infeasible before solving: {reason.value}")
            return self._infeasible(strategy, current, reason, iterations=0)

        lower = max(constraints.min_weight, 0.0)
        upper = min(constraints.max_weight, 1.0)
        cap_relaxed = upper * n < 1.0 - 1e-12
        notes: list[str] = []
        if cap_relaxed:
            upper = 1.0 / n
            notes.append(f"max_weight raised to {upper:.4f} so weights can sum to 1")

        cov_reg, regularized = regularize_covariance(stats.covariance)
        if regularized:
            notes.append("covariance regularized")

        solver = _ProblemSolver(self, stats, cov_reg, lower, upper, risk_free_rate)
        weights, iterations, converged = solver.solve(strategy)
        weights = project_capped_simplex(weights, lower, upper)

        repaired = False
        if enforce_limits:
            outcome = self._enforce_limits(weights, current, constraints, solver, stats)
            if isinstance(outcome, InfeasibilityReason):
                logger.info(f"No blend satisfies {outcome.value}; holding current weights")
                return self._infeasible(strategy, current, outcome, iterations, tuple(notes))
            repaired = not np.allclose(outcome, weights)
            if repaired:
                notes.append("blended toward feasible anchor")
            weights = outcome

        within_tolerance = self._within_tolerance(weights, lower, upper)
        status = (
            OptimizationStatus.OPTIMAL
            if converged and within_tolerance and not cap_relaxed
            else OptimizationStatus.SUBOPTIMAL
        )

        logger.debug(
            f"Optimizer finished: objective={strategy.kind.value}, status={status.value}, "
            f"iterations={iterations}, repaired={repaired}"
        )

        return AllocationSolution(
            weights=weights,
            status=status,
            iterations=iterations,
            converged=converged,
            objective_value=strategy.evaluate(weights),
            repaired=repaired,
            cap_relaxed=cap_relaxed,
            notes=tuple(notes),
        )

    def _infeasible(
        self,
        strategy: Objective,
        current: np.ndarray,
        reason: InfeasibilityReason,
        iterations: int,
        notes: tuple[str, ...] = (),
    ) -> AllocationSolution:
        return AllocationSolution(
            weights=current.copy(),
            status=OptimizationStatus.INFEASIBLE,
            iterations=iterations,
            converged=False,
            objective_value=strategy.evaluate(current),
            reason=reason,
            notes=notes,
        )

    def _within_tolerance(self, w: np.ndarray, lower: float, upper: float) -> bool:
        tol = self.constraint_tolerance
        return (
            abs(float(w.sum()) - 1.0) <= self.simplex_tolerance
            and bool(np.all(w >= lower - tol))
            and bool(np.all(w <= upper + tol))
        )

    def _enforce_limits(
        self,
        weights: np.ndarray,
        current: np.ndarray,
        constraints: OptimizationConstraints,
        solver: _ProblemSolver,
        stats: PortfolioStatistics,
    ) -> np.ndarray | InfeasibilityReason:
        cov = stats.covariance
        budget = constraints.risk_budget
        cap = constraints.max_turnover
        tol = self.constraint_tolerance

        def risk_ok(x: np.ndarray, slack: float = 1e-12) -> bool:
            return portfolio_risk(x, cov) <= budget + slack

        def turnover_ok(x: np.ndarray, slack: float = 1e-12) -> bool:
            return turnover(x, current) <= cap + slack

        if not risk_ok(weights):
            anchor = solver.min_risk_weights()
            if not risk_ok(anchor, tol):
                return InfeasibilityReason.RISK_BUDGET
            alpha = bisect_blend(weights, anchor, risk_ok)
            weights = anchor if alpha is None else _blend(weights, anchor, alpha)
            logger.debug(f"Risk budget repair: alpha={alpha}")

        if not turnover_ok(weights):
            anchor = project_capped_simplex(current, solver.lower, solver.upper)
            if not turnover_ok(anchor, tol):
                return InfeasibilityReason.TURNOVER_CAP
            if not risk_ok(anchor, tol):
                return InfeasibilityReason.RISK_BUDGET

            def both_ok(x: np.ndarray) -> bool:
                return turnover_ok(x) and risk_ok(x)

            alpha = bisect_blend(weights, anchor, both_ok)
            weights = anchor if alpha is None else _blend(weights, anchor, alpha)
            logger.debug(f"Turnover repair: alpha={alpha}")

        return weights


class _ProblemSolver:
    """Per-call solver state: bounds, regularized covariance, cached min-risk."""

    def __init__(
        self,
        config: ConstrainedOptimizer,
        stats: PortfolioStatistics,
        cov_reg: np.ndarray,
        lower: float,
        upper: float,
        risk_free_rate: float,
    ):
        self.config = config
        self.stats = stats
        self.cov = cov_reg
        self.lower = lower
        self.upper = upper
        self.risk_free_rate = risk_free_rate
        self._min_risk: tuple[np.ndarray, int, bool] | None = None

    def solve(self, strategy: Objective) -> tuple[np.ndarray, int, bool]:
        """Return (weights, iterations, converged) for ``strategy``."""
        if not strategy.is_quadratic:
            return solve_linear(strategy.scores, self.lower, self.upper), 1, True
        if strategy.kind == OptimizationObjective.MIN_RISK:
            return self._solve_min_risk()
        if strategy.kind == OptimizationObjective.RISK_PARITY:
            return self._solve_risk_parity(strategy)
        return self._solve_max_sharpe()

    def min_risk_weights(self) -> np.ndarray:
        return self._solve_min_risk()[0]

    def _solve_min_risk(self) -> tuple[np.ndarray, int, bool]:
        if self._min_risk is None:
            n = self.stats.n_assets
            solution = solve_qp(
                self.cov,
                np.zeros(n),
                self.lower,
                self.upper,
                max_iter=self.config.max_iterations,
                tol=self.config.tolerance,
            )
            self._min_risk = (solution.x, solution.iterations, solution.converged)
        return self._min_risk

    def _solve_max_sharpe(self) -> tuple[np.ndarray, int, bool]:
        """
        Iterative rescaling of mean-variance subproblems.

        With λ_k the Sharpe ratio of the current iterate and σ_k its risk,
        each step solves

            min ½ (λ_k / σ_k) w'Σw - (r - rf)'w

        which majorizes the Sharpe fractional program at w_k, so the Sharpe
        ratio never decreases. Stops once the gain falls below tolerance.
        """
        returns = self.stats.expected_returns
        excess = returns - self.risk_free_rate

        w, iterations, inner_converged = self._solve_min_risk()
        best_w = w
        best_sharpe = sharpe_ratio(w, returns, self.cov, self.risk_free_rate)

        outer_converged = False
        for _ in range(self.config.outer_max_iterations):
            sigma = portfolio_risk(w, self.cov)
            if sigma < 1e-12:
                outer_converged = True
                break
            lam = max(best_sharpe, SHARPE_LAMBDA_FLOOR)
            solution = solve_qp(
                (lam / sigma) * self.cov,
                -excess,
                self.lower,
                self.upper,
                x0=w,
                max_iter=self.config.max_iterations,
                tol=self.config.tolerance,
            )
            iterations += solution.iterations
            inner_converged = inner_converged and solution.converged

            candidate = sharpe_ratio(solution.x, returns, self.cov, self.risk_free_rate)
            if candidate <= best_sharpe + SHARPE_TOLERANCE:
                if candidate > best_sharpe:
                    best_w, best_sharpe = solution.x, candidate
                outer_converged = True
                break
            best_w, best_sharpe = solution.x, candidate
            w = solution.x

        return best_w, iterations, inner_converged and outer_converged

    def _solve_risk_parity(self, strategy: Objective) -> tuple[np.ndarray, int, bool]:
        """
        Equal risk contributions via the log-barrier program

            min ½ y'Σy - (1/N) Σ log y_i,   y > 0

        which is strictly convex for positive definite Σ. Its stationary
        point satisfies y_i (Σy)_i = 1/N, so y / Σy has equal risk
        contributions for any correlation structure. When that allocation
        violates the box, the contribution dispersion is minimized over the
        box+simplex starting from its projection.
        """
        n = self.stats.n_assets
        cov = self.cov
        budget = np.full(n, 1.0 / n)

        def barrier(y: np.ndarray) -> tuple[float, np.ndarray]:
            sy = cov @ y
            value = 0.5 * float(y @ sy) - float(budget @ np.log(y))
            return value, sy - budget / y

        # Optimum has y'Σy = Σ budget = 1; start on that scale.
        inverse_vol = 1.0 / np.sqrt(np.diag(cov))
        y0 = inverse_vol / np.sqrt(float(inverse_vol @ cov @ inverse_vol))

        result = minimize(
            barrier,
            y0,
            jac=True,
            method="L-BFGS-B",
            bounds=[(1e-12, None)] * n,
            options={
                "maxiter": self.config.max_iterations,
                "ftol": 1e-13,
                "gtol": self.config.tolerance,
            },
        )
        iterations = int(result.nit)
        converged = bool(result.success)
        w = result.x / result.x.sum()

        tol = self.config.constraint_tolerance
        if np.all(w >= self.lower - tol) and np.all(w <= self.upper + tol):
            return w, iterations, converged

        start = project_capped_simplex(w, self.lower, self.upper)
        # Box+simplex is a single point.
        if self.upper * n <= 1.0 + 1e-12 or self.lower * n >= 1.0 - 1e-12:
            return start, iterations, converged
        refined = minimize(
            strategy.loss,
            start,
            jac=strategy.gradient_hint,
            method="SLSQP",
            bounds=[(self.lower, self.upper)] * n,
            constraints=[{"type": "eq", "fun": lambda x: np.sum(x) - 1.0}],
            options={"maxiter": self.config.max_iterations, "ftol": 1e-14},
        )
        iterations += int(refined.nit)
        logger.debug(
            f"Risk parity box refinement: success={refined.success}, "
            f"dispersion={refined.fun:.3e}"
        )
        if strategy.loss(refined.x) > strategy.loss(start):
            return start, iterations, False
        return refined.x, iterations, converged and bool(refined.success)
