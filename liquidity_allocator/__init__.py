"""
Liquidity Allocator
===================

Portfolio allocation optimizer for yield-bearing liquidity positions.

Given position snapshots and an optimization config, produces target
weights, a costed rebalancing plan and decision-support recommendations.

Usage:
    from liquidity_allocator import OptimizationConfig, Position, optimize_portfolio

    result = await optimize_portfolio(positions, OptimizationConfig(objective="min_risk"))
"""

from __future__ import annotations

__version__ = "1.0.0"

from liquidity_allocator.core.exceptions import (
    AllocatorError,
    EmptyPortfolioError,
    InvalidConfigError,
    InvalidTimeframeError,
)
from liquidity_allocator.portfolio.service import (
    PortfolioOptimizationService,
    get_optimization_service,
    optimize_portfolio,
    reset_optimization_service,
)
from liquidity_allocator.quant_engine.types import (
    OptimizationConfig,
    OptimizationConstraints,
    OptimizationObjective,
    OptimizationResult,
    OptimizationStatus,
    Position,
    RebalanceFrequency,
    Timeframe,
)


__all__ = [
    "__version__",
    "AllocatorError",
    "EmptyPortfolioError",
    "InvalidConfigError",
    "InvalidTimeframeError",
    "OptimizationConfig",
    "OptimizationConstraints",
    "OptimizationObjective",
    "OptimizationResult",
    "OptimizationStatus",
    "PortfolioOptimizationService",
    "Position",
    "RebalanceFrequency",
    "Timeframe",
    "get_optimization_service",
    "optimize_portfolio",
    "reset_optimization_service",
]
