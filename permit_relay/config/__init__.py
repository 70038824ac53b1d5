"""Configuration utilities for the permit relayer."""

from .loader import (
    ApiUrlsConfig,
    ConfigError,
    ContractsConfig,
    DefaultsConfig,
    NetworkConfig,
    RelayerConfig,
    TokenConfig,
    load_config,
)

__all__ = [
    "ApiUrlsConfig",
    "ConfigError",
    "ContractsConfig",
    "DefaultsConfig",
    "NetworkConfig",
    "RelayerConfig",
    "TokenConfig",
    "load_config",
]
