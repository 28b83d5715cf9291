"""
Session Relay Configuration Module

Provides centralized configuration management for the relay service.
"""

from .schema import (
    RelayConfig,
    ServerConfig,
    SessionsConfig,
    BridgeConfig,
    TimeoutsConfig,
    LoggingConfig,
)
from .loader import load_config, load_config_from_file, create_default_config

__all__ = [
    "RelayConfig",
    "ServerConfig",
    "SessionsConfig",
    "BridgeConfig",
    "TimeoutsConfig",
    "LoggingConfig",
    "load_config",
    "load_config_from_file",
    "create_default_config",
]
