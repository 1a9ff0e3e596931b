"""
gvm-manager Configuration Module

Provides centralized configuration management for the manager.
"""

from .schema import (
    AgentControllerConfig,
    DatabaseConfig,
    FeedConfig,
    LoggingConfig,
    ManagerConfig,
)
from .loader import load_config, load_config_from_file

__all__ = [
    "ManagerConfig",
    "DatabaseConfig",
    "FeedConfig",
    "LoggingConfig",
    "AgentControllerConfig",
    "load_config",
    "load_config_from_file",
]
