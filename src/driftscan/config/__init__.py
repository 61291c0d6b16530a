"""Configuration management for the drift scanner."""

from .models import (
    EnvironmentConfig,
    ProviderConfig,
    RetryConfig,
    ScannerConfig,
)
from .parser import Config, DEFAULT_CONFIG_FILE

__all__ = [
    "EnvironmentConfig",
    "ProviderConfig",
    "RetryConfig",
    "ScannerConfig",
    "Config",
    "DEFAULT_CONFIG_FILE",
]
