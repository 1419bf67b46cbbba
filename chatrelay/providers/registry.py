"""Provider registry: model name -> provider binding and adapter."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

import httpx

from chatrelay.config.relay import ProviderKind, RelayConfig
from chatrelay.core import ConfigInvalidError, UnsupportedModelError, get_logger
from chatrelay.providers.base import BaseProvider, ProviderBinding
from chatrelay.providers.ollama import OllamaProvider
from chatrelay.providers.openai_compat import OpenAICompatProvider

logger = get_logger(__name__)


class ProviderRegistry:
    """Built once from configuration; read-only afterwards and safe to share."""

    def __init__(
        self,
        config: RelayConfig,
        *,
        timeout_seconds: float = 60,
        max_retries: int = 0,
        transport_overrides: Mapping[str, httpx.AsyncBaseTransport] | None = None,
        adapter_overrides: Mapping[str, BaseProvider] | None = None,
    ):
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._transport_overrides = dict(transport_overrides or {})
        self._adapter_overrides = dict(adapter_overrides or {})

        bindings: dict[str, ProviderBinding] = {}
        adapters: dict[str, BaseProvider] = {}
        by_model: dict[str, ProviderBinding] = {}
        self._initialize(config, bindings, adapters, by_model)

        self._bindings = MappingProxyType(bindings)
        self._adapters = MappingProxyType(adapters)
        self._by_model = MappingProxyType(by_model)

    def _initialize(
        self,
        config: RelayConfig,
        bindings: dict[str, ProviderBinding],
        adapters: dict[str, BaseProvider],
        by_model: dict[str, ProviderBinding],
    ) -> None:
        if not config.providers:
            raise ConfigInvalidError("No providers configured")

        for name, provider_config in config.providers.items():
            if not provider_config.models:
                raise ConfigInvalidError(
                    "Provider has no models configured", details={"provider": name}
                )
            binding = ProviderBinding(
                provider_name=name,
                endpoint=provider_config.base_url,
                credential=provider_config.api_key,
                supported_models=frozenset(provider_config.models),
                kind=provider_config.kind,
            )
            for model in provider_config.models:
                owner = by_model.get(model)
                if owner is not None and owner.provider_name != name:
                    raise ConfigInvalidError(
                        "Model is declared by more than one provider",
                        details={"model": model, "providers": [owner.provider_name, name]},
                    )
                by_model[model] = binding
            bindings[name] = binding
            adapters[name] = self._build_adapter(binding)

        logger.info(
            "Provider registry initialized",
            data={"providers": sorted(bindings), "models": len(by_model)},
        )

    def _build_adapter(self, binding: ProviderBinding) -> BaseProvider:
        override = self._adapter_overrides.get(binding.provider_name)
        if override is not None:
            return override

        transport = self._transport_overrides.get(binding.provider_name)
        if binding.kind == ProviderKind.OPENAI_COMPAT:
            return OpenAICompatProvider(
                base_url=binding.endpoint,
                timeout=self._timeout_seconds,
                max_retries=self._max_retries,
                api_key=binding.credential or None,
                display_name=binding.provider_name,
                transport=transport,
            )
        if binding.kind == ProviderKind.OLLAMA:
            return OllamaProvider(
                base_url=binding.endpoint,
                timeout=self._timeout_seconds,
                max_retries=self._max_retries,
                display_name=binding.provider_name,
                transport=transport,
            )
        raise ConfigInvalidError(
            "Unknown provider kind",
            details={"provider": binding.provider_name, "kind": str(binding.kind)},
        )

    def resolve(self, model_name: str) -> ProviderBinding:
        """Resolve the binding that declares ``model_name`` or raise UnsupportedModelError."""
        binding = self._by_model.get(model_name)
        if binding is None:
            raise UnsupportedModelError(model_name)
        return binding

    def adapter_for(self, binding: ProviderBinding) -> BaseProvider:
        return self._adapters[binding.provider_name]

    def supports(self, model_name: str) -> bool:
        return model_name in self._by_model

    def list_models(self) -> set[str]:
        """Union of models across all bindings."""
        return set(self._by_model)

    def bindings(self) -> list[ProviderBinding]:
        return list(self._bindings.values())

    async def aclose(self) -> None:
        """Close all provider clients."""
        for name, adapter in self._adapters.items():
            try:
                await adapter.aclose()
            except Exception:  # pragma: no cover - shutdown best effort
                logger.warning("Error closing provider client", data={"provider": name})
