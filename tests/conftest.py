"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Generator

import numpy as np
import pytest

from liquidity_allocator.cache.metrics import cache_metrics
from liquidity_allocator.portfolio.service import reset_optimization_service
from liquidity_allocator.quant_engine.types import Position


pytest_plugins = ["pytest_asyncio"]


@pytest.fixture(autouse=True)
def fresh_service() -> Generator[None, None, None]:
    """Every test starts with an empty default service and zeroed metrics."""
    reset_optimization_service()
    cache_metrics.reset()
    yield
    reset_optimization_service()


@pytest.fixture
def example_positions() -> list[Position]:
    """Three positions without return history (pnl proxy only)."""
    return [
        Position(id="A", current_value=20000.0, initial_value=18000.0, pnl_percent=11.11,
                 token_x="SOL", token_y="USDC"),
        Position(id="B", current_value=15000.0, initial_value=10000.0, pnl_percent=50.0,
                 token_x="JUP", token_y="USDC"),
        Position(id="C", current_value=8000.0, initial_value=12000.0, pnl_percent=-33.33,
                 token_x="BONK", token_y="SOL"),
    ]


@pytest.fixture
def concentrated_positions() -> list[Position]:
    """80/10/10 value split with identical pnl."""
    return [
        Position(id="A", current_value=8000.0, pnl_percent=10.0),
        Position(id="B", current_value=1000.0, pnl_percent=10.0),
        Position(id="C", current_value=1000.0, pnl_percent=10.0),
    ]


@pytest.fixture
def history_positions() -> list[Position]:
    """Eight positions with 60 periods of correlated return history."""
    rng = np.random.default_rng(42)
    market = rng.normal(0.001, 0.01, size=60)
    positions = []
    for i in range(8):
        beta = 0.5 + 0.15 * i
        returns = 0.0005 * i + beta * market + rng.normal(0.0, 0.01, size=60)
        positions.append(
            Position(
                id=f"P{i}",
                current_value=1000.0 + 250.0 * i,
                pnl_percent=float(returns.sum() * 100),
                return_history=tuple(float(r) for r in returns),
            )
        )
    return positions


@pytest.fixture
def hedged_positions() -> list[Position]:
    """Six positions alternating long and short exposure to one market factor."""
    rng = np.random.default_rng(7)
    market = rng.normal(0.0, 0.02, size=60)
    positions = []
    for i in range(6):
        sign = 1.0 if i % 2 == 0 else -1.0
        returns = sign * market + rng.normal(0.0, 0.005 * (1 + i), size=60)
        positions.append(
            Position(
                id=f"H{i}",
                current_value=1000.0,
                pnl_percent=float(returns.sum() * 100),
                return_history=tuple(float(r) for r in returns),
            )
        )
    return positions
