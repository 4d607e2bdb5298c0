from __future__ import annotations

from .config import (
    AssistantConfig,
    AuthConfig,
    LoggingConfig,
    RelayConfig,
    ServerConfig,
    load_relay_config,
    load_relay_config_dict,
)
from .errors import (
    ConfigError,
    InvalidInputError,
    NotFoundError,
    ProcessFailureError,
    TurnTimeoutError,
    TypedRelayError,
)

__all__ = [
    "AssistantConfig",
    "AuthConfig",
    "ConfigError",
    "InvalidInputError",
    "LoggingConfig",
    "NotFoundError",
    "ProcessFailureError",
    "RelayConfig",
    "ServerConfig",
    "TurnTimeoutError",
    "TypedRelayError",
    "load_relay_config",
    "load_relay_config_dict",
]
