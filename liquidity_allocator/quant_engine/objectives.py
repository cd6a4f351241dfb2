"""
Objective functions for the allocation engine.

Each objective is a small strategy object bound to the portfolio statistics:

- ``evaluate(w)``: the natural objective value (Sharpe, volatility, ...)
- ``loss(w)``: the value the optimizer minimizes (negated when maximizing)
- ``gradient_hint(w)``: gradient of ``loss`` with respect to the weights

All methods are pure functions of the weight vector.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np

from liquidity_allocator.quant_engine.statistics import (
    portfolio_return,
    portfolio_risk,
    portfolio_variance,
    risk_contributions,
)
from liquidity_allocator.quant_engine.types import (
    OptimizationObjective,
    PortfolioStatistics,
)


class Objective(ABC):
    """Base class for allocation objectives."""

    kind: OptimizationObjective
    maximize: bool = False
    is_quadratic: bool = True

    def __init__(self, stats: PortfolioStatistics, risk_free_rate: float = 0.0):
        self.stats = stats
        self.returns = stats.expected_returns
        self.cov = stats.covariance
        self.risk_free_rate = risk_free_rate

    @abstractmethod
    def evaluate(self, w: np.ndarray) -> float:
        """Natural objective value at ``w``."""

    @abstractmethod
    def gradient_hint(self, w: np.ndarray) -> np.ndarray:
        """Gradient of ``loss`` at ``w``."""

    def loss(self, w: np.ndarray) -> float:
        value = self.evaluate(w)
        return -value if self.maximize else value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(n_assets={self.stats.n_assets})"


class MaxSharpeObjective(Objective):
    """(w·r - rf) / sqrt(w' Σ w), maximized."""

    kind = OptimizationObjective.MAX_SHARPE
    maximize = True

    def evaluate(self, w: np.ndarray) -> float:
        risk = portfolio_risk(w, self.cov)
        if risk < 1e-12:
            return 0.0
        return (portfolio_return(w, self.returns) - self.risk_free_rate) / risk

    def gradient_hint(self, w: np.ndarray) -> np.ndarray:
        risk = portfolio_risk(w, self.cov)
        if risk < 1e-12:
            return -(self.returns - self.risk_free_rate)
        excess = portfolio_return(w, self.returns) - self.risk_free_rate
        grad = self.returns / risk - excess * (self.cov @ w) / risk**3
        return -grad


class MinRiskObjective(Objective):
    """Portfolio volatility, minimized."""

    kind = OptimizationObjective.MIN_RISK

    def evaluate(self, w: np.ndarray) -> float:
        return portfolio_risk(w, self.cov)

    def gradient_hint(self, w: np.ndarray) -> np.ndarray:
        risk = portfolio_risk(w, self.cov)
        if risk < 1e-12:
            return np.zeros_like(w)
        return (self.cov @ w) / risk


class LinearObjective(Objective):
    """Objective of the form w·scores, maximized."""

    is_quadratic = False
    maximize = True

    @property
    @abstractmethod
    def scores(self) -> np.ndarray:
        """Per-position score the linear allocator ranks on."""

    def evaluate(self, w: np.ndarray) -> float:
        return float(np.dot(w, self.scores))

    def gradient_hint(self, w: np.ndarray) -> np.ndarray:
        return -self.scores


class MaxReturnObjective(LinearObjective):
    """Expected return w·r."""

    kind = OptimizationObjective.MAX_RETURN

    @property
    def scores(self) -> np.ndarray:
        return self.returns


class MeanReversionObjective(LinearObjective):
    """Contrarian tilt Σ w_i · (-pnl_i): rewards weight on recent losers."""

    kind = OptimizationObjective.MEAN_REVERSION

    @property
    def scores(self) -> np.ndarray:
        return -self.stats.pnl


class RiskParityObjective(Objective):
    """Dispersion of risk contributions Σ (RC_i - mean RC)², minimized."""

    kind = OptimizationObjective.RISK_PARITY

    def evaluate(self, w: np.ndarray) -> float:
        rc = risk_contributions(w, self.cov)
        return float(np.sum((rc - rc.mean()) ** 2))

    def gradient_hint(self, w: np.ndarray) -> np.ndarray:
        variance = portfolio_variance(w, self.cov)
        if variance < 1e-16:
            return np.zeros_like(w)
        g = self.cov @ w
        rc = w * g / variance
        # J[i, k] = d RC_i / d w_k
        jacobian = (np.diag(g) + np.diag(w) @ self.cov) / variance
        jacobian -= 2.0 * np.outer(w * g, g) / variance**2
        return 2.0 * jacobian.T @ (rc - rc.mean())


_OBJECTIVES: dict[OptimizationObjective, type[Objective]] = {
    OptimizationObjective.MAX_SHARPE: MaxSharpeObjective,
    OptimizationObjective.MIN_RISK: MinRiskObjective,
    OptimizationObjective.MAX_RETURN: MaxReturnObjective,
    OptimizationObjective.MEAN_REVERSION: MeanReversionObjective,
    OptimizationObjective.RISK_PARITY: RiskParityObjective,
}


def build_objective(
    kind: OptimizationObjective | str,
    stats: PortfolioStatistics,
    risk_free_rate: float = 0.0,
) -> Objective:
    """Instantiate the objective strategy for ``kind``."""
    return _OBJECTIVES[OptimizationObjective(kind)](stats, risk_free_rate)
