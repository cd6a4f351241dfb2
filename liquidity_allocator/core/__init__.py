"""Core infrastructure: settings, logging, exceptions."""

from .config import Settings, get_settings, settings
from .exceptions import (
    AllocatorError,
    EmptyPortfolioError,
    InvalidConfigError,
    InvalidTimeframeError,
)
from .logging import get_logger, optimization_run, setup_logging


__all__ = [
    "AllocatorError",
    "EmptyPortfolioError",
    "InvalidConfigError",
    "InvalidTimeframeError",
    "Settings",
    "get_logger",
    "get_settings",
    "optimization_run",
    "settings",
    "setup_logging",
]
