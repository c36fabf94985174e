"""Configuration for SecureChain."""

from securechain.config.settings import (
    AnalysisConfig,
    BackendConfig,
    BackendKind,
    CacheConfig,
    Platform,
    RetryConfig,
    SeverityLevel,
    Settings,
)

__all__ = [
    "AnalysisConfig",
    "BackendConfig",
    "BackendKind",
    "CacheConfig",
    "Platform",
    "RetryConfig",
    "SeverityLevel",
    "Settings",
]
