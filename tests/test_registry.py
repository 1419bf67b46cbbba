"""Tests for the provider registry."""

import pytest
from conftest import TEST_MODEL, StubProvider, make_relay_config

from chatrelay.config import ProviderConfig, ProviderKind, RelayConfig
from chatrelay.core import ConfigInvalidError, ErrorCode, UnsupportedModelError
from chatrelay.providers import OllamaProvider, OpenAICompatProvider, ProviderRegistry


def _config(**providers: ProviderConfig) -> RelayConfig:
    base = make_relay_config()
    return RelayConfig(providers=providers, rate_limits=base.rate_limits, session=base.session)


def test_resolve_returns_binding_for_declared_model() -> None:
    stub = StubProvider()
    registry = ProviderRegistry(make_relay_config(), adapter_overrides={"stub": stub})

    binding = registry.resolve(TEST_MODEL)

    assert binding.provider_name == "stub"
    assert binding.endpoint == "http://stub.test"
    assert TEST_MODEL in binding.supported_models
    assert registry.adapter_for(binding) is stub
    assert registry.supports(TEST_MODEL)


def test_resolve_unknown_model_raises() -> None:
    registry = ProviderRegistry(make_relay_config(), adapter_overrides={"stub": StubProvider()})

    with pytest.raises(UnsupportedModelError) as exc_info:
        registry.resolve("gpt-unknown")

    assert exc_info.value.code == ErrorCode.UNSUPPORTED_MODEL
    assert exc_info.value.details == {"model": "gpt-unknown"}
    assert registry.supports("gpt-unknown") is False


@pytest.mark.asyncio
async def test_builds_adapter_per_kind_and_lists_union_of_models() -> None:
    registry = ProviderRegistry(
        _config(
            deepseek=ProviderConfig(
                base_url="https://api.deepseek.com/v1", api_key="sk", models=["deepseek-chat"]
            ),
            local=ProviderConfig(
                base_url="http://localhost:11434",
                models=["llama3.1", "qwen2"],
                kind=ProviderKind.OLLAMA,
            ),
        )
    )

    assert registry.list_models() == {"deepseek-chat", "llama3.1", "qwen2"}
    assert isinstance(registry.adapter_for(registry.resolve("deepseek-chat")), OpenAICompatProvider)
    assert isinstance(registry.adapter_for(registry.resolve("qwen2")), OllamaProvider)
    assert len(registry.bindings()) == 2
    await registry.aclose()


def test_model_claimed_by_two_providers_is_rejected() -> None:
    with pytest.raises(ConfigInvalidError) as exc_info:
        ProviderRegistry(
            _config(
                a=ProviderConfig(base_url="http://a", models=["shared"]),
                b=ProviderConfig(base_url="http://b", models=["shared"]),
            ),
            adapter_overrides={"a": StubProvider(), "b": StubProvider()},
        )

    assert exc_info.value.details["model"] == "shared"


def test_binding_repr_hides_credential() -> None:
    registry = ProviderRegistry(
        _config(p=ProviderConfig(base_url="http://p", api_key="sk-hidden", models=["m"])),
        adapter_overrides={"p": StubProvider()},
    )

    assert "sk-hidden" not in repr(registry.resolve("m"))
