"""
Tests for the constrained optimizer.

Tests cover:
1. Structural feasibility checks and cap relaxation
2. Closed-form solutions per objective
3. Turnover and risk-budget repair
4. Weight-sum and bound properties on realistic inputs
"""

import numpy as np
import pytest


def _stats(returns, cov, pnl=None):
    from liquidity_allocator.quant_engine.types import PortfolioStatistics

    returns = np.asarray(returns, dtype=float)
    return PortfolioStatistics(
        position_ids=tuple(f"P{i}" for i in range(len(returns))),
        expected_returns=returns,
        covariance=np.asarray(cov, dtype=float),
        pnl=returns.copy() if pnl is None else np.asarray(pnl, dtype=float),
        sample_counts=tuple(0 for _ in returns),
    )


def _optimize(stats, objective, current=None, risk_free_rate=0.0, **constraint_kwargs):
    from liquidity_allocator.quant_engine.optimizer import ConstrainedOptimizer
    from liquidity_allocator.quant_engine.types import OptimizationConstraints

    n = stats.n_assets
    current = np.full(n, 1.0 / n) if current is None else np.asarray(current, dtype=float)
    return ConstrainedOptimizer().optimize(
        stats,
        objective,
        OptimizationConstraints(**constraint_kwargs),
        current,
        risk_free_rate=risk_free_rate,
    )


@pytest.fixture
def independent_stats():
    """Three uncorrelated positions with 20% volatility."""
    return _stats([0.1, 0.1, 0.1], 0.04 * np.eye(3))


class TestFeasibility:
    """Structural checks before any numerical work."""

    def test_min_exceeds_max(self, independent_stats):
        from liquidity_allocator.quant_engine.types import InfeasibilityReason, OptimizationStatus

        current = np.array([0.5, 0.3, 0.2])
        solution = _optimize(independent_stats, "max_sharpe", current, max_weight=0.2, min_weight=0.4)

        assert solution.status == OptimizationStatus.INFEASIBLE
        assert solution.reason == InfeasibilityReason.MIN_EXCEEDS_MAX
        assert solution.iterations == 0

    @pytest.mark.parametrize("field", ["max_weight", "min_weight", "max_turnover", "risk_budget"])
    def test_non_finite_constraint_rejected(self, independent_stats, field):
        from liquidity_allocator.core.exceptions import InvalidConfigError

        with pytest.raises(InvalidConfigError, match=field):
            _optimize(independent_stats, "min_risk", **{field: float("nan")})
        np.testing.assert_allclose(solution.weights, current)

    def test_min_weight_sum(self, independent_stats):
        from liquidity_allocator.quant_engine.types import InfeasibilityReason, OptimizationStatus

        solution = _optimize(independent_stats, "min_risk", max_weight=0.5, min_weight=0.4)

        assert solution.status == OptimizationStatus.INFEASIBLE
        assert solution.reason == InfeasibilityReason.MIN_WEIGHT_SUM

    def test_check_feasibility_order(self):
        from liquidity_allocator.quant_engine.optimizer import check_feasibility
        from liquidity_allocator.quant_engine.types import (
            InfeasibilityReason,
            OptimizationConstraints,
        )

        both = OptimizationConstraints(max_weight=0.2, min_weight=0.5)
        assert check_feasibility(both, 3) == InfeasibilityReason.MIN_EXCEEDS_MAX
        assert check_feasibility(OptimizationConstraints(min_weight=1 / 3), 3) is None

    def test_cap_relaxed_to_equal_split(self, independent_stats):
        from liquidity_allocator.quant_engine.types import OptimizationStatus

        solution = _optimize(independent_stats, "max_return", max_weight=0.2)

        assert solution.cap_relaxed is True
        assert solution.status == OptimizationStatus.SUBOPTIMAL
        np.testing.assert_allclose(solution.weights, [1 / 3, 1 / 3, 1 / 3])

    def test_single_position(self):
        from liquidity_allocator.quant_engine.types import OptimizationStatus

        solution = _optimize(_stats([0.1], [[0.04]]), "max_sharpe", max_weight=0.3, min_weight=0.5)

        assert solution.status == OptimizationStatus.OPTIMAL
        np.testing.assert_array_equal(solution.weights, [1.0])


class TestObjectives:
    """Closed-form optima."""

    def test_min_risk_two_assets(self):
        from liquidity_allocator.quant_engine.types import OptimizationStatus

        solution = _optimize(_stats([0.1, 0.1], [[0.04, 0.02], [0.02, 0.09]]), "min_risk")

        assert solution.status == OptimizationStatus.OPTIMAL
        np.testing.assert_allclose(solution.weights, [7 / 9, 2 / 9], atol=1e-6)

    def test_max_sharpe_two_assets_tangency(self):
        cov = np.array([[0.04, 0.02], [0.02, 0.09]])
        returns = np.array([0.10, 0.15])
        solution = _optimize(_stats(returns, cov), "max_sharpe", risk_free_rate=0.05)

        tangency = np.linalg.solve(cov, returns - 0.05)
        tangency /= tangency.sum()
        np.testing.assert_allclose(solution.weights, tangency, atol=1e-3)

    def test_max_sharpe_never_below_min_risk(self):
        from liquidity_allocator.quant_engine.statistics import sharpe_ratio

        rng = np.random.default_rng(5)
        a = rng.normal(0.0, 0.1, size=(6, 6))
        cov = a @ a.T + 0.005 * np.eye(6)
        returns = rng.uniform(0.02, 0.2, size=6)
        stats = _stats(returns, cov)

        best = _optimize(stats, "max_sharpe", risk_free_rate=0.01, max_weight=0.5)
        baseline = _optimize(stats, "min_risk", max_weight=0.5)

        assert sharpe_ratio(best.weights, returns, cov, 0.01) >= (
            sharpe_ratio(baseline.weights, returns, cov, 0.01) - 1e-9
        )

    def test_risk_parity_inverse_volatility(self):
        stats = _stats([0.1, 0.1], np.diag([0.04, 0.16]))
        solution = _optimize(stats, "risk_parity")

        np.testing.assert_allclose(solution.weights, [2 / 3, 1 / 3], atol=1e-6)

    def test_risk_parity_equalizes_contributions(self):
        from liquidity_allocator.quant_engine.statistics import risk_contributions

        cov = np.array(
            [
                [0.040, 0.006, 0.002],
                [0.006, 0.090, 0.010],
                [0.002, 0.010, 0.160],
            ]
        )
        solution = _optimize(_stats([0.1, 0.1, 0.1], cov), "risk_parity")

        rc = risk_contributions(solution.weights, cov)
        np.testing.assert_allclose(rc, [1 / 3, 1 / 3, 1 / 3], atol=1e-5)

    def test_risk_parity_negative_correlations(self, hedged_positions):
        from liquidity_allocator.quant_engine.statistics import estimate_statistics, risk_contributions
        from liquidity_allocator.quant_engine.types import OptimizationStatus, Timeframe

        stats = estimate_statistics(hedged_positions, Timeframe.ALL)
        assert (stats.covariance[0, 1::2] < 0).all()

        solution = _optimize(stats, "risk_parity")

        rc = risk_contributions(solution.weights, stats.covariance)
        assert solution.status == OptimizationStatus.OPTIMAL
        assert solution.converged is True
        assert solution.weights.min() > 0.02
        np.testing.assert_allclose(rc, np.full(6, 1 / 6), atol=1e-4)

    def test_risk_parity_respects_box(self, hedged_positions):
        from liquidity_allocator.quant_engine.objectives import build_objective
        from liquidity_allocator.quant_engine.solver import project_capped_simplex
        from liquidity_allocator.quant_engine.statistics import estimate_statistics
        from liquidity_allocator.quant_engine.types import Timeframe

        stats = estimate_statistics(hedged_positions, Timeframe.ALL)
        unbounded = _optimize(stats, "risk_parity").weights
        assert unbounded.max() > 0.19

        solution = _optimize(stats, "risk_parity", max_weight=0.19, min_weight=0.05)
        dispersion = build_objective("risk_parity", stats).evaluate

        assert solution.weights.sum() == pytest.approx(1.0, abs=1e-6)
        assert solution.weights.max() <= 0.19 + 1e-6
        assert solution.weights.min() >= 0.05 - 1e-6
        projected = project_capped_simplex(unbounded, 0.05, 0.19)
        assert dispersion(solution.weights) <= dispersion(projected) + 1e-12

    def test_max_return_greedy(self):
        solution = _optimize(
            _stats([0.1111, 0.5, -0.3333], 0.04 * np.eye(3)),
            "max_return",
            max_weight=0.6,
            min_weight=0.1,
        )

        np.testing.assert_allclose(solution.weights, [0.3, 0.6, 0.1])

    def test_mean_reversion_favors_losers(self):
        stats = _stats([0.1, 0.1, 0.1], 0.04 * np.eye(3), pnl=[0.2, -0.3, 0.05])
        solution = _optimize(stats, "mean_reversion", max_weight=0.5)

        assert solution.weights[1] == pytest.approx(0.5)
        assert solution.weights[2] == pytest.approx(0.5)
        assert solution.weights[0] == pytest.approx(0.0)

    def test_duplicate_positions_do_not_crash(self):
        cov = np.full((3, 3), 0.04)
        for objective in ("max_sharpe", "min_risk", "risk_parity"):
            solution = _optimize(_stats([0.1, 0.1, 0.1], cov), objective)
            assert solution.weights.sum() == pytest.approx(1.0, abs=1e-6)
            assert np.all(np.isfinite(solution.weights))


class TestLimitRepair:
    """Turnover cap and risk budget."""

    def test_turnover_cap_blends_toward_current(self, independent_stats):
        from liquidity_allocator.quant_engine.statistics import turnover

        current = np.array([0.8, 0.1, 0.1])
        solution = _optimize(
            independent_stats, "max_sharpe", current, max_weight=0.4, max_turnover=0.45
        )

        assert solution.repaired is True
        assert turnover(solution.weights, current) <= 0.45 + 1e-6
        assert solution.weights.sum() == pytest.approx(1.0)
        assert solution.weights.max() <= 0.4 + 1e-9

    def test_turnover_cap_unreachable(self, independent_stats):
        from liquidity_allocator.quant_engine.types import InfeasibilityReason, OptimizationStatus

        current = np.array([0.8, 0.1, 0.1])
        solution = _optimize(
            independent_stats, "max_sharpe", current, max_weight=0.4, max_turnover=0.3
        )

        assert solution.status == OptimizationStatus.INFEASIBLE
        assert solution.reason == InfeasibilityReason.TURNOVER_CAP
        np.testing.assert_allclose(solution.weights, current)

    def test_risk_budget_blends_toward_min_risk(self):
        from liquidity_allocator.quant_engine.statistics import portfolio_risk

        stats = _stats([0.5, 0.1, 0.05], 0.04 * np.eye(3))
        solution = _optimize(stats, "max_return", risk_budget=0.15)

        assert solution.repaired is True
        assert portfolio_risk(solution.weights, stats.covariance) <= 0.15 + 1e-9
        # Still tilted toward the best return
        assert solution.weights[0] > solution.weights[1]

    def test_risk_budget_unreachable(self):
        from liquidity_allocator.quant_engine.types import InfeasibilityReason, OptimizationStatus

        stats = _stats([0.5, 0.1, 0.05], 0.04 * np.eye(3))
        solution = _optimize(stats, "max_return", risk_budget=0.1)

        assert solution.status == OptimizationStatus.INFEASIBLE
        assert solution.reason == InfeasibilityReason.RISK_BUDGET

    def test_limits_skipped_for_reference(self, independent_stats):
        from liquidity_allocator.quant_engine.optimizer import ConstrainedOptimizer
        from liquidity_allocator.quant_engine.types import OptimizationConstraints

        solution = ConstrainedOptimizer().optimize(
            independent_stats,
            "max_sharpe",
            OptimizationConstraints(max_turnover=0.0),
            np.array([0.8, 0.1, 0.1]),
            enforce_limits=False,
        )

        assert solution.repaired is False
        np.testing.assert_allclose(solution.weights, [1 / 3, 1 / 3, 1 / 3], atol=1e-6)

    def test_bisect_blend_finds_boundary(self):
        from liquidity_allocator.quant_engine.optimizer import bisect_blend

        alpha = bisect_blend(np.array([0.0]), np.array([1.0]), lambda x: x[0] >= 0.3)

        assert alpha == pytest.approx(0.3, abs=1e-12)
        assert bisect_blend(np.array([0.5]), np.array([1.0]), lambda x: x[0] >= 0.3) == 0.0
        assert bisect_blend(np.array([0.0]), np.array([0.1]), lambda x: x[0] >= 0.3) is None


class TestProperties:
    """Invariants across objectives on estimated statistics."""

    @pytest.mark.parametrize(
        "objective", ["max_sharpe", "min_risk", "max_return", "mean_reversion", "risk_parity"]
    )
    def test_weights_sum_to_one_within_bounds(self, history_positions, objective):
        from liquidity_allocator.quant_engine.optimizer import ConstrainedOptimizer
        from liquidity_allocator.quant_engine.statistics import current_weights, estimate_statistics
        from liquidity_allocator.quant_engine.types import (
            OptimizationConstraints,
            OptimizationStatus,
            Timeframe,
        )

        stats = estimate_statistics(history_positions, Timeframe.ALL)
        constraints = OptimizationConstraints(max_weight=0.3, min_weight=0.05)
        solution = ConstrainedOptimizer().optimize(
            stats, objective, constraints, current_weights(history_positions), risk_free_rate=0.0
        )

        assert solution.status != OptimizationStatus.INFEASIBLE
        assert solution.weights.sum() == pytest.approx(1.0, abs=1e-6)
        assert solution.weights.min() >= 0.05 - 1e-3
        assert solution.weights.max() <= 0.3 + 1e-3

    def test_deterministic(self, history_positions):
        from liquidity_allocator.quant_engine.optimizer import ConstrainedOptimizer
        from liquidity_allocator.quant_engine.statistics import current_weights, estimate_statistics
        from liquidity_allocator.quant_engine.types import OptimizationConstraints

        stats = estimate_statistics(history_positions)
        current = current_weights(history_positions)
        constraints = OptimizationConstraints(max_weight=0.25, max_turnover=0.2)

        first = ConstrainedOptimizer().optimize(stats, "max_sharpe", constraints, current)
        second = ConstrainedOptimizer().optimize(stats, "max_sharpe", constraints, current)

        np.testing.assert_array_equal(first.weights, second.weights)
