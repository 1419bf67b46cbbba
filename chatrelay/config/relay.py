"""
Relay configuration file: provider bindings, chat limits, and expiration.

The file is JSON with the camelCase keys used by the existing deployments::

    {
      "providers": {
        "deepseek": {"baseURL": "...", "apiKey": "${DEEPSEEK_API_KEY}", "models": ["deepseek-chat"]}
      },
      "rateLimits": {"requestsPerMinute": 10, "maxMessageLength": 4000, "maxSystemPromptLength": 2000},
      "session": {"expirationHours": 24}
    }

``${VAR}`` placeholders in ``apiKey`` are resolved from the environment, and a
``<PROVIDER>_API_KEY`` variable always wins over the file.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from chatrelay.core import ConfigInvalidError, get_logger

logger = get_logger(__name__)

_PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ProviderKind(str, Enum):
    """Adapter variants a provider binding can select."""

    OPENAI_COMPAT = "openai_compat"
    OLLAMA = "ollama"


class ProviderConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    base_url: str = Field(alias="baseURL", min_length=1)
    api_key: str = Field(default="", alias="apiKey", repr=False)
    models: list[str] = Field(min_length=1)
    kind: ProviderKind = ProviderKind.OPENAI_COMPAT

    @field_validator("models")
    @classmethod
    def validate_models(cls, v: list[str]) -> list[str]:
        cleaned = [m.strip() for m in v]
        if any(not m for m in cleaned):
            raise ValueError("model names must be non-empty")
        return cleaned


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    requests_per_window: int = Field(
        default=10,
        ge=0,
        validation_alias=AliasChoices("requestsPerMinute", "requestsPerWindow", "requests_per_window"),
    )
    window_seconds: float = Field(default=60.0, gt=0, alias="windowSeconds")
    max_message_length: int = Field(default=4000, gt=0, alias="maxMessageLength")
    max_system_prompt_length: int = Field(default=2000, ge=0, alias="maxSystemPromptLength")


class SessionConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    expiration_hours: float = Field(default=24.0, gt=0, alias="expirationHours")

    @property
    def expiration(self) -> timedelta:
        return timedelta(hours=self.expiration_hours)


class RelayConfig(BaseModel):
    """Validated relay configuration; immutable once loaded."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    providers: dict[str, ProviderConfig]
    rate_limits: RateLimitConfig = Field(alias="rateLimits")
    session: SessionConfig

    @field_validator("providers")
    @classmethod
    def validate_providers(cls, v: dict[str, ProviderConfig]) -> dict[str, ProviderConfig]:
        if not v:
            raise ValueError("No providers configured")
        return v


def _apply_environment_overrides(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    providers = raw.get("providers")
    if not isinstance(providers, dict):
        return raw

    resolved = dict(raw)
    resolved["providers"] = {}
    for name, provider in providers.items():
        if not isinstance(provider, dict):
            resolved["providers"][name] = provider
            continue
        provider = dict(provider)
        api_key = provider.get("apiKey", provider.get("api_key", ""))
        if isinstance(api_key, str):
            match = _PLACEHOLDER.fullmatch(api_key.strip())
            if match:
                env_name = match.group(1)
                api_key = environ.get(env_name, "")
                if not api_key:
                    logger.warning(
                        "Environment variable for provider API key is not set",
                        data={"provider": name, "variable": env_name},
                    )
        direct = environ.get(f"{name.upper()}_API_KEY")
        if direct:
            api_key = direct
        provider.pop("api_key", None)
        provider["apiKey"] = api_key
        resolved["providers"][name] = provider
    return resolved


def parse_relay_config(
    raw: Any, environ: Mapping[str, str] | None = None
) -> RelayConfig:
    """Validate an already-decoded configuration structure."""
    if not isinstance(raw, dict):
        raise ConfigInvalidError("Configuration must be a JSON object")

    env = os.environ if environ is None else environ
    try:
        config = RelayConfig.model_validate(_apply_environment_overrides(raw, env))
    except ValidationError as exc:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in exc.errors(include_url=False, include_input=False)
        ]
        raise ConfigInvalidError("Invalid relay configuration", details={"errors": errors}) from exc

    for name, provider in config.providers.items():
        if not provider.api_key:
            logger.warning("Provider has no API key configured", data={"provider": name})
    return config


def load_relay_config(
    path: str | Path, environ: Mapping[str, str] | None = None
) -> RelayConfig:
    """Read and validate the relay configuration file, failing fast."""
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigInvalidError(
            "Configuration file not found", details={"path": str(config_path)}
        )

    try:
        raw = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigInvalidError(
            "Configuration file could not be parsed",
            details={"path": str(config_path), "reason": str(exc)},
        ) from exc

    config = parse_relay_config(raw, environ)
    logger.info(
        "Relay configuration loaded",
        data={"path": str(config_path), "providers": sorted(config.providers)},
    )
    return config
