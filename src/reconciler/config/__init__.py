"""Configuration management for the reconciler."""

from .models import (
    ExecutorSettings,
    LoggingSettings,
    ProviderSettings,
    ReconcilerConfig,
    RetrySettings,
    StateSettings,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "ExecutorSettings",
    "LoggingSettings",
    "ProviderSettings",
    "ReconcilerConfig",
    "RetrySettings",
    "StateSettings",
    "Config",
    "ConfigValidationError",
]
