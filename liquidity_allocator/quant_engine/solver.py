"""
Numerical routines for allocation over the capped simplex.

Feasible set:
    C = { w : Σ w_i = 1, lower_i <= w_i <= upper_i }

- ``project_capped_simplex``: exact Euclidean projection onto C
- ``solve_qp``: min ½ x'Qx + c'x over C by accelerated projected gradient
  (FISTA with adaptive restart), step 1/L with L = λ_max(Q)
- ``solve_linear``: max scores·x over C by greedy filling (the LP optimum
  of a box-constrained simplex)
- ``regularize_covariance``: Tikhonov ridge Σ + λI for near-singular Σ

Convergence of ``solve_qp`` is declared when the projected step norm drops
below ``tol``; the loop never exceeds ``max_iter`` iterations.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from liquidity_allocator.core.config import settings
from liquidity_allocator.core.logging import get_logger


logger = get_logger("quant_engine.solver")


@dataclass(frozen=True)
class QPSolution:
    """Result of ``solve_qp``."""
    x: np.ndarray
    iterations: int
    converged: bool
    objective: float


def _bounds(n: int, lower, upper) -> tuple[np.ndarray, np.ndarray]:
    lo = np.broadcast_to(np.asarray(lower, dtype=float), (n,)).astype(float)
    hi = np.broadcast_to(np.asarray(upper, dtype=float), (n,)).astype(float)
    return lo, hi


def project_capped_simplex(
    v: np.ndarray,
    lower: float | np.ndarray,
    upper: float | np.ndarray,
    total: float = 1.0,
) -> np.ndarray:
    """
    Project ``v`` onto { x : Σx = total, lower <= x <= upper }.

    The projection is clip(v - τ, lower, upper) for the unique shift τ
    that hits the target sum. s(τ) = Σ clip(v_i - τ, lo_i, hi_i) is
    piecewise linear and non-increasing with breakpoints at v - lo and
    v - hi, so τ is found exactly by interpolating between breakpoints.

    Raises
    ------
    ValueError
        If the feasible set is empty.
    """
    v = np.asarray(v, dtype=float)
    lo, hi = _bounds(v.size, lower, upper)

    if np.any(lo > hi) or lo.sum() > total + 1e-12 or hi.sum() < total - 1e-12:
        raise ValueError("Capped simplex is empty for the given bounds")

    breakpoints = np.unique(np.concatenate([v - lo, v - hi]))
    sums = np.clip(v[None, :] - breakpoints[:, None], lo, hi).sum(axis=1)

    idx = int(np.searchsorted(-sums, -total, side="left"))
    idx = min(idx, len(breakpoints) - 1)
    if idx == 0 or math.isclose(sums[idx], total, rel_tol=0.0, abs_tol=1e-15):
        tau = breakpoints[idx]
    else:
        t0, t1 = breakpoints[idx - 1], breakpoints[idx]
        s0, s1 = sums[idx - 1], sums[idx]
        tau = t0 + (s0 - total) * (t1 - t0) / (s0 - s1)

    return np.clip(v - tau, lo, hi)


def regularize_covariance(
    cov: np.ndarray,
    condition_threshold: float | None = None,
) -> tuple[np.ndarray, bool]:
    """
    Return Σ + λI when Σ is singular or ill-conditioned.

    λ = 1e-6 · trace(Σ) / N, plus any negative eigenvalue mass left over
    from floating point noise. Returns the (possibly unchanged) matrix and
    whether regularization was applied.
    """
    threshold = condition_threshold or settings.condition_number_threshold
    cov = np.asarray(cov, dtype=float)
    n = cov.shape[0]
    eigenvalues = np.linalg.eigvalsh(cov)
    min_eig, max_eig = float(eigenvalues[0]), float(eigenvalues[-1])

    if min_eig > 0 and max_eig / min_eig <= threshold:
        return cov, False

    ridge = 1e-6 * float(np.trace(cov)) / n
    if ridge <= 0:
        ridge = 1e-12
    ridge += max(0.0, -min_eig)

    logger.debug(
        f"Covariance regularized: min_eig={min_eig:.3e}, max_eig={max_eig:.3e}, "
        f"ridge={ridge:.3e}"
    )
    return cov + ridge * np.eye(n), True


def solve_qp(
    Q: np.ndarray,
    c: np.ndarray,
    lower: float | np.ndarray,
    upper: float | np.ndarray,
    x0: np.ndarray | None = None,
    max_iter: int | None = None,
    tol: float | None = None,
) -> QPSolution:
    """
    Minimize ½ x'Qx + c'x over the capped simplex.

    Parameters
    ----------
    Q : np.ndarray
        Symmetric positive semi-definite matrix (N × N).
    c : np.ndarray
        Linear term (N,).
    lower, upper : float or np.ndarray
        Box bounds per asset.
    x0 : np.ndarray, optional
        Warm start; projected onto the feasible set first.
    max_iter : int, optional
        Iteration cap (defaults to settings).
    tol : float, optional
        Step-norm tolerance (defaults to settings).

    Returns
    -------
    QPSolution
        Final iterate, iteration count and convergence flag.
    """
    Q = np.asarray(Q, dtype=float)
    c = np.asarray(c, dtype=float)
    n = c.size
    max_iter = max_iter or settings.solver_max_iterations
    tol = tol or settings.solver_tolerance

    def objective(x: np.ndarray) -> float:
        return float(0.5 * x @ Q @ x + c @ x)

    lipschitz = float(np.linalg.eigvalsh(Q)[-1]) if n > 0 else 0.0
    if lipschitz <= 0:
        lipschitz = max(float(np.abs(c).max(initial=0.0)), 1.0)
    step = 1.0 / lipschitz

    start = np.full(n, 1.0 / n) if x0 is None else np.asarray(x0, dtype=float)
    x = project_capped_simplex(start, lower, upper)
    y = x.copy()
    t = 1.0
    f_x = objective(x)

    converged = False
    iterations = 0
    for iterations in range(1, max_iter + 1):
        x_new = project_capped_simplex(y - step * (Q @ y + c), lower, upper)
        if np.linalg.norm(x_new - x) < tol:
            x = x_new
            converged = True
            break

        f_new = objective(x_new)
        t_new = (1.0 + math.sqrt(1.0 + 4.0 * t * t)) / 2.0
        if f_new > f_x:
            # Momentum overshoot: restart from the plain gradient step
            t_new = 1.0
            y = x_new
        else:
            y = x_new + ((t - 1.0) / t_new) * (x_new - x)
        x, f_x, t = x_new, f_new, t_new

    if not converged:
        logger.debug(f"QP hit iteration cap ({max_iter}) without converging")

    return QPSolution(x=x, iterations=iterations, converged=converged, objective=objective(x))


def solve_linear(
    scores: np.ndarray,
    lower: float | np.ndarray,
    upper: float | np.ndarray,
) -> np.ndarray:
    """
    Maximize scores·x over the capped simplex.

    Every asset starts at its lower bound; the remaining mass goes to the
    highest-scoring assets up to their upper bound. Ties keep input order.
    """
    scores = np.asarray(scores, dtype=float)
    lo, hi = _bounds(scores.size, lower, upper)
    if lo.sum() > 1.0 + 1e-12 or hi.sum() < 1.0 - 1e-12:
        raise ValueError("Capped simplex is empty for the given bounds")

    x = lo.copy()
    remaining = 1.0 - float(lo.sum())
    for i in np.argsort(-scores, kind="stable"):
        if remaining <= 0:
            break
        add = min(hi[i] - lo[i], remaining)
        x[i] += add
        remaining -= add
    return x
