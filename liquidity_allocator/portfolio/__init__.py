"""Portfolio optimization orchestration."""

from .service import (
    PortfolioOptimizationService,
    get_optimization_service,
    optimize_portfolio,
    reset_optimization_service,
)


__all__ = [
    "PortfolioOptimizationService",
    "get_optimization_service",
    "optimize_portfolio",
    "reset_optimization_service",
]
