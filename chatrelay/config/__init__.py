"""Configuration module for chatrelay."""

from chatrelay.config.relay import (
    ProviderConfig,
    ProviderKind,
    RateLimitConfig,
    RelayConfig,
    SessionConfig,
    load_relay_config,
    parse_relay_config,
)
from chatrelay.config.settings import Settings, get_settings

__all__ = [
    "ProviderConfig",
    "ProviderKind",
    "RateLimitConfig",
    "RelayConfig",
    "SessionConfig",
    "Settings",
    "get_settings",
    "load_relay_config",
    "parse_relay_config",
]
