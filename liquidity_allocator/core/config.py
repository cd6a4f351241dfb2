"""Allocator settings with Pydantic validation and environment loading."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Allocator settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="LIQUIDITY_ALLOCATOR_",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = "Liquidity Allocator"
    app_version: str = "1.0.0"
    debug: bool = Field(default=False, description="Include source locations in logs")

    # Market assumptions
    risk_free_rate: float = Field(
        default=0.05, ge=-1.0, le=1.0, description="Risk-free rate used in Sharpe ratios"
    )
    default_variance: float = Field(
        default=0.04,
        gt=0,
        description="Variance substituted for positions with fewer than 2 return samples",
    )

    # Solver
    solver_max_iterations: int = Field(
        default=5000, ge=10, le=100_000, description="Iteration cap for the QP solver"
    )
    solver_tolerance: float = Field(
        default=1e-9, gt=0, description="Step-norm convergence tolerance"
    )
    outer_max_iterations: int = Field(
        default=50, ge=1, description="Cap for max-Sharpe and risk-parity outer loops"
    )
    constraint_tolerance: float = Field(
        default=1e-3, gt=0, description="Tolerance on bound, turnover and risk checks"
    )
    simplex_tolerance: float = Field(
        default=1e-6, gt=0, description="Tolerance on the weight-sum constraint"
    )
    condition_number_threshold: float = Field(
        default=1e10, gt=1, description="Covariance condition number that triggers regularization"
    )

    # Rebalancing costs
    fee_per_action: float = Field(default=0.5, ge=0, description="Transaction fee per action")
    slippage_rate: float = Field(default=0.003, ge=0, description="Slippage charged per action")
    gas_per_action: float = Field(default=0.01, ge=0, description="Network fee per action")
    rebalance_epsilon: float = Field(
        default=0.001, ge=0, description="Weight change below which a position is maintained"
    )
    materiality_threshold: float = Field(
        default=0.02, ge=0, lt=1, description="Minimum action size as a share of total value"
    )

    # Recommendations
    concentration_limit: float = Field(
        default=0.7, gt=0, le=1, description="Value share that triggers a diversification warning"
    )
    efficiency_floor: float = Field(
        default=0.5, ge=0, le=1, description="Efficiency below which improvement is suggested"
    )

    # Result cache and history
    cache_max_entries: int = Field(default=128, ge=1, description="LRU bound of the result cache")
    history_max_entries: int = Field(default=100, ge=1, description="Optimization runs kept in history")

    # Logging
    log_level: str = Field(
        default="INFO", description="Log level: DEBUG, INFO, WARNING, ERROR"
    )
    log_format: str = Field(default="json", description="Log format: json or text")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"log_level must be one of {valid}")
        return upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        lower = v.lower()
        if lower not in {"json", "text"}:
            raise ValueError("log_format must be 'json' or 'text'")
        return lower


@lru_cache
def get_settings() -> Settings:
    """Cached settings factory."""
    return Settings()


settings = get_settings()
