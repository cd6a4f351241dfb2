"""Tests for objective strategies."""

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


def _numeric_gradient(fn, w, h=1e-7):
    grad = np.zeros_like(w)
    for i in range(len(w)):
        step = np.zeros_like(w)
        step[i] = h
        grad[i] = (fn(w + step) - fn(w - step)) / (2 * h)
    return grad


@pytest.fixture
def three_asset_stats():
    cov = np.array(
        [
            [0.040, 0.006, 0.002],
            [0.006, 0.090, 0.010],
            [0.002, 0.010, 0.160],
        ]
    )
    return _stats([0.08, 0.12, 0.20], cov, pnl=[0.05, -0.10, 0.30])


class TestBuildObjective:
    """Strategy selection."""

    @pytest.mark.parametrize(
        "kind,class_name",
        [
            ("max_sharpe", "MaxSharpeObjective"),
            ("min_risk", "MinRiskObjective"),
            ("max_return", "MaxReturnObjective"),
            ("mean_reversion", "MeanReversionObjective"),
            ("risk_parity", "RiskParityObjective"),
        ],
    )
    def test_selects_by_kind(self, three_asset_stats, kind, class_name):
        from liquidity_allocator.quant_engine.objectives import build_objective

        objective = build_objective(kind, three_asset_stats)

        assert type(objective).__name__ == class_name
        assert objective.kind.value == kind

    def test_unknown_kind_raises(self, three_asset_stats):
        from liquidity_allocator.quant_engine.objectives import build_objective

        with pytest.raises(ValueError):
            build_objective("momentum", three_asset_stats)

    def test_flags(self, three_asset_stats):
        from liquidity_allocator.quant_engine.objectives import build_objective

        assert build_objective("max_sharpe", three_asset_stats).maximize is True
        assert build_objective("min_risk", three_asset_stats).maximize is False
        assert build_objective("max_return", three_asset_stats).is_quadratic is False
        assert build_objective("risk_parity", three_asset_stats).is_quadratic is True


class TestObjectiveValues:
    """Natural values and losses."""

    def test_max_sharpe_matches_helper(self, three_asset_stats):
        from liquidity_allocator.quant_engine.objectives import build_objective
        from liquidity_allocator.quant_engine.statistics import sharpe_ratio

        w = np.array([0.5, 0.3, 0.2])
        objective = build_objective("max_sharpe", three_asset_stats, risk_free_rate=0.05)

        expected = sharpe_ratio(w, three_asset_stats.expected_returns, three_asset_stats.covariance, 0.05)
        assert objective.evaluate(w) == pytest.approx(expected)
        assert objective.loss(w) == pytest.approx(-expected)

    def test_min_risk_is_volatility(self, three_asset_stats):
        from liquidity_allocator.quant_engine.objectives import build_objective

        w = np.array([1.0, 0.0, 0.0])

        assert build_objective("min_risk", three_asset_stats).evaluate(w) == pytest.approx(0.2)

    def test_mean_reversion_scores_negated_pnl(self, three_asset_stats):
        from liquidity_allocator.quant_engine.objectives import build_objective

        objective = build_objective("mean_reversion", three_asset_stats)

        np.testing.assert_allclose(objective.scores, [-0.05, 0.10, -0.30])
        assert objective.evaluate(np.array([0.0, 1.0, 0.0])) == pytest.approx(0.10)

    def test_risk_parity_zero_at_equal_contributions(self):
        from liquidity_allocator.quant_engine.objectives import build_objective

        stats = _stats([0.1, 0.1], np.diag([0.04, 0.16]))
        w = np.array([2 / 3, 1 / 3])

        assert build_objective("risk_parity", stats).evaluate(w) == pytest.approx(0.0, abs=1e-12)

    def test_evaluation_is_pure(self, three_asset_stats):
        from liquidity_allocator.quant_engine.objectives import build_objective

        w = np.array([0.2, 0.3, 0.5])
        objective = build_objective("risk_parity", three_asset_stats)

        first = objective.evaluate(w)
        objective.gradient_hint(w)
        assert objective.evaluate(w) == first
        np.testing.assert_array_equal(w, [0.2, 0.3, 0.5])


class TestGradients:
    """Analytic gradients against central differences."""

    @pytest.mark.parametrize("kind", ["max_sharpe", "min_risk", "risk_parity", "max_return"])
    def test_gradient_matches_finite_difference(self, three_asset_stats, kind):
        from liquidity_allocator.quant_engine.objectives import build_objective

        objective = build_objective(kind, three_asset_stats, risk_free_rate=0.03)
        w = np.array([0.45, 0.35, 0.20])

        numeric = _numeric_gradient(objective.loss, w)
        np.testing.assert_allclose(objective.gradient_hint(w), numeric, rtol=1e-4, atol=1e-6)
