"""
Allocation Engine
=================

Constrained weight optimization for yield-bearing liquidity positions.

Pipeline
--------
- statistics: expected returns and covariance from position histories
- objectives: objective strategies (Sharpe, risk, return, reversion, parity)
- solver: capped-simplex projection, QP and LP routines
- optimizer: constrained optimizer with turnover / risk-budget repair
- rebalancing: costed, prioritized rebalancing plan
- recommendations: decision-support guidance

Objectives
----------
- MAX_SHARPE: Maximize excess return per unit of volatility
- MIN_RISK: Minimize portfolio volatility
- MAX_RETURN: Maximize expected return
- MEAN_REVERSION: Tilt toward recent underperformers
- RISK_PARITY: Equal risk contribution from each position
"""

from __future__ import annotations

from liquidity_allocator.quant_engine.objectives import (
    MaxReturnObjective,
    MaxSharpeObjective,
    MeanReversionObjective,
    MinRiskObjective,
    Objective,
    RiskParityObjective,
    build_objective,
)
from liquidity_allocator.quant_engine.optimizer import (
    ConstrainedOptimizer,
    bisect_blend,
    check_feasibility,
    validate_constraints,
)
from liquidity_allocator.quant_engine.rebalancing import RebalancingPlanner
from liquidity_allocator.quant_engine.recommendations import (
    efficiency_score,
    generate_recommendations,
)
from liquidity_allocator.quant_engine.solver import (
    QPSolution,
    project_capped_simplex,
    regularize_covariance,
    solve_linear,
    solve_qp,
)
from liquidity_allocator.quant_engine.statistics import (
    current_weights,
    estimate_statistics,
    herfindahl_index,
    portfolio_return,
    portfolio_risk,
    portfolio_variance,
    risk_contributions,
    sanitize_value,
    sharpe_ratio,
    turnover,
    weights_from_values,
)
from liquidity_allocator.quant_engine.types import (
    ActionTiming,
    AllocationSolution,
    CostEstimate,
    CurrentMetrics,
    ImplementationPhase,
    InfeasibilityReason,
    OptimizationConfig,
    OptimizationConstraints,
    OptimizationHistoryEntry,
    OptimizationMetrics,
    OptimizationObjective,
    OptimizationResult,
    OptimizationStatus,
    PortfolioStatistics,
    PortfolioWeight,
    Position,
    Priority,
    RebalanceAction,
    RebalanceActionType,
    RebalanceFrequency,
    RebalancePlan,
    Recommendation,
    RecommendationType,
    Timeframe,
)


__all__ = [
    # Types
    "ActionTiming",
    "AllocationSolution",
    "CostEstimate",
    "CurrentMetrics",
    "ImplementationPhase",
    "InfeasibilityReason",
    "OptimizationConfig",
    "OptimizationConstraints",
    "OptimizationHistoryEntry",
    "OptimizationMetrics",
    "OptimizationObjective",
    "OptimizationResult",
    "OptimizationStatus",
    "PortfolioStatistics",
    "PortfolioWeight",
    "Position",
    "Priority",
    "RebalanceAction",
    "RebalanceActionType",
    "RebalanceFrequency",
    "RebalancePlan",
    "Recommendation",
    "RecommendationType",
    "Timeframe",
    # Statistics
    "current_weights",
    "estimate_statistics",
    "herfindahl_index",
    "portfolio_return",
    "portfolio_risk",
    "portfolio_variance",
    "risk_contributions",
    "sanitize_value",
    "sharpe_ratio",
    "turnover",
    "weights_from_values",
    # Objectives
    "MaxReturnObjective",
    "MaxSharpeObjective",
    "MeanReversionObjective",
    "MinRiskObjective",
    "Objective",
    "RiskParityObjective",
    "build_objective",
    # Solver
    "QPSolution",
    "project_capped_simplex",
    "regularize_covariance",
    "solve_linear",
    "solve_qp",
    # Optimizer
    "ConstrainedOptimizer",
    "bisect_blend",
    "check_feasibility",
    "validate_constraints",
    # Planning
    "RebalancingPlanner",
    "efficiency_score",
    "generate_recommendations",
]
