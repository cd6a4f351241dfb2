"""
Return and covariance estimation for liquidity positions.

Σ_ij = (1/T) Σ_t (r_i,t - mean_i)(r_j,t - mean_j)

Estimated over the common trailing window of all positions that carry at
least two return samples. Positions with sparse history fall back to their
point-in-time pnl as a one-sample return proxy, a default variance on the
diagonal, and zero covariance with every other position.
"""

from __future__ import annotations

import math
from typing import Any, Sequence

import numpy as np
import pandas as pd

from liquidity_allocator.core.config import settings
from liquidity_allocator.core.logging import get_logger
from liquidity_allocator.quant_engine.types import (
    PortfolioStatistics,
    Position,
    Timeframe,
)


logger = get_logger("quant_engine.statistics")

MIN_HISTORY_SAMPLES = 2


def sanitize_value(value: Any) -> float:
    """Map NaN, ±Inf, None and non-numeric values to 0.0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _sanitize_field(position: Position, name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if not math.isfinite(number):
        logger.warning(f"Invalid {name} {value!r} on position {position.id} replaced with 0")
        return 0.0
    return number


def position_values(positions: Sequence[Position]) -> np.ndarray:
    """Sanitized current values, negative values floored at zero."""
    values = np.array(
        [_sanitize_field(p, "current_value", p.current_value) for p in positions],
        dtype=float,
    )
    return np.maximum(values, 0.0)


def weights_from_values(values: np.ndarray) -> np.ndarray:
    """Value share per entry of already sanitized ``values``."""
    total = float(values.sum())
    if total <= 0:
        return np.full(len(values), 1.0 / len(values))
    return values / total


def current_weights(positions: Sequence[Position]) -> np.ndarray:
    """Value share per position; equal weights when nothing has value."""
    return weights_from_values(position_values(positions))


def _history_window(position: Position, lookback: int | None) -> pd.Series:
    series = pd.Series(
        [sanitize_value(r) for r in position.return_history], dtype=float
    )
    if lookback is not None:
        series = series.iloc[-lookback:]
    return series.reset_index(drop=True)


def estimate_statistics(
    positions: Sequence[Position],
    timeframe: Timeframe = Timeframe.D30,
    default_variance: float | None = None,
) -> PortfolioStatistics:
    """
    Derive expected returns and covariance for ``positions``.

    Parameters
    ----------
    positions : Sequence[Position]
        Snapshots in the order the optimizer will use.
    timeframe : Timeframe
        Limits each history to its most recent samples.
    default_variance : float, optional
        Variance for positions with fewer than two samples.

    Returns
    -------
    PortfolioStatistics
        Symmetric covariance with a non-negative diagonal.
    """
    n = len(positions)
    default_variance = settings.default_variance if default_variance is None else default_variance

    pnl = np.array(
        [_sanitize_field(p, "pnl_percent", p.pnl_percent) / 100.0 for p in positions],
        dtype=float,
    )
    histories = [_history_window(p, timeframe.lookback) for p in positions]
    counts = tuple(len(h) for h in histories)

    expected = pnl.copy()
    rich = [i for i, count in enumerate(counts) if count >= MIN_HISTORY_SAMPLES]
    for i in rich:
        expected[i] = float(histories[i].mean())

    cov = np.zeros((n, n), dtype=float)
    if rich:
        window = min(counts[i] for i in rich)
        frame = pd.DataFrame(
            {i: histories[i].iloc[-window:].to_numpy() for i in rich}
        )
        block = frame.cov(ddof=0).to_numpy()
        cov[np.ix_(rich, rich)] = np.nan_to_num(block, nan=0.0, posinf=0.0, neginf=0.0)

    sparse = [i for i in range(n) if counts[i] < MIN_HISTORY_SAMPLES]
    for i in sparse:
        cov[i, i] = default_variance

    cov = (cov + cov.T) / 2.0
    np.fill_diagonal(cov, np.maximum(np.diag(cov), 0.0))

    logger.debug(
        f"Estimated statistics: {n} positions, {len(rich)} with history, "
        f"{len(sparse)} on default variance"
    )

    return PortfolioStatistics(
        position_ids=tuple(p.id for p in positions),
        expected_returns=expected,
        covariance=cov,
        pnl=pnl,
        sample_counts=counts,
    )


def portfolio_return(w: np.ndarray, expected_returns: np.ndarray) -> float:
    """Expected portfolio return w·r."""
    return float(np.dot(w, expected_returns))


def portfolio_variance(w: np.ndarray, cov: np.ndarray) -> float:
    """Portfolio variance w' Σ w, clipped at zero."""
    return max(float(w @ cov @ w), 0.0)


def portfolio_risk(w: np.ndarray, cov: np.ndarray) -> float:
    """Portfolio volatility sqrt(w' Σ w)."""
    return math.sqrt(portfolio_variance(w, cov))


def sharpe_ratio(
    w: np.ndarray,
    expected_returns: np.ndarray,
    cov: np.ndarray,
    risk_free_rate: float,
) -> float:
    """(w·r - rf) / σ_p, or 0 when the portfolio carries no risk."""
    risk = portfolio_risk(w, cov)
    if risk < 1e-12:
        return 0.0
    return (portfolio_return(w, expected_returns) - risk_free_rate) / risk


def risk_contributions(w: np.ndarray, cov: np.ndarray) -> np.ndarray:
    """
    Fractional risk contribution per position.

    RC_i = w_i (Σw)_i / (w' Σ w); sums to 1 when the variance is positive.
    """
    variance = portfolio_variance(w, cov)
    if variance < 1e-16:
        return np.zeros_like(w)
    return w * (cov @ w) / variance


def turnover(target: np.ndarray, current: np.ndarray) -> float:
    """Half the L1 distance between two allocations."""
    return 0.5 * float(np.abs(np.asarray(target) - np.asarray(current)).sum())


def herfindahl_index(w: np.ndarray) -> float:
    """Concentration Σ w_i²; 1/N for equal weights, 1 for a single holding."""
    return float(np.sum(np.square(w)))
