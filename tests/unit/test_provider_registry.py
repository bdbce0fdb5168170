import json

import pytest

from gateway.config.settings import Settings
from gateway.core.errors import UnknownModelError
from gateway.providers.base import ProviderConfig, ProviderConfigError
from gateway.providers.registry import (
    ProviderRegistry,
    build_provider_registry,
    parse_provider_config,
)


def _provider(name: str, *models: str, **kwargs) -> ProviderConfig:
    return ProviderConfig(
        name=name,
        base_url=f"https://{name}.example.test/v1/",
        api_key=f"{name}-key",
        models=models,
        **kwargs,
    )


def test_resolve_returns_owning_provider() -> None:
    registry = ProviderRegistry([_provider("a", "m1", "m2"), _provider("b", "m3")])
    assert registry.resolve("m2").name == "a"
    assert registry.resolve("m3").name == "b"
    assert len(registry) == 3


def test_resolve_is_exact_match() -> None:
    registry = ProviderRegistry([_provider("a", "Hermes-4-405B")])
    with pytest.raises(UnknownModelError, match="Unknown model: hermes-4-405b"):
        registry.resolve("hermes-4-405b")


def test_model_claimed_twice_is_rejected() -> None:
    with pytest.raises(ProviderConfigError, match="claimed by both"):
        ProviderRegistry([_provider("a", "shared"), _provider("b", "shared")])


def test_duplicate_provider_name_is_rejected() -> None:
    with pytest.raises(ProviderConfigError, match="Duplicate provider name"):
        ProviderRegistry([_provider("a", "m1"), _provider("a", "m2")])


def test_models_are_listed_sorted() -> None:
    registry = ProviderRegistry([_provider("b", "zeta"), _provider("a", "alpha")])
    assert registry.models() == [("alpha", "a"), ("zeta", "b")]


def test_builtin_providers_from_settings() -> None:
    registry = build_provider_registry(
        Settings(
            openrouter_api_key="or-key",
            openrouter_models="anthropic/claude-3.5-sonnet",
            nous_api_key="nous-key",
            nous_models="Hermes-4.3-36B,Hermes-4-405B",
            provider_config="",
        )
    )

    openrouter = registry.resolve("anthropic/claude-3.5-sonnet")
    assert openrouter.name == "openrouter"
    assert openrouter.completions_url == "https://openrouter.ai/api/v1/chat/completions"
    assert openrouter.extra_headers["HTTP-Referer"] == "https://3virgulas.com"
    assert openrouter.forced_temperature is None

    nous = registry.resolve("Hermes-4.3-36B")
    assert nous.name == "nous"
    assert nous.completions_url == "https://inference-api.nousresearch.com/v1/chat/completions"
    assert nous.forced_temperature == 0.7
    assert dict(nous.extra_headers) == {}


def test_provider_config_json_overrides_builtins() -> None:
    raw = json.dumps(
        [
            {
                "name": "local",
                "base_url": "http://localhost:11434/v1",
                "api_key": "unused",
                "models": ["llama3"],
                "forced_temperature": 0.2,
                "extra_headers": {"X-Trace": "1"},
            }
        ]
    )
    registry = build_provider_registry(Settings(provider_config=raw, openrouter_models="x"))

    assert [p.name for p in registry.providers()] == ["local"]
    local = registry.resolve("llama3")
    assert local.forced_temperature == 0.2
    assert local.timeout_s == 60.0
    with pytest.raises(UnknownModelError):
        registry.resolve("x")


def test_provider_config_rejects_invalid_json() -> None:
    with pytest.raises(ProviderConfigError, match="not valid JSON"):
        parse_provider_config("[{")


def test_provider_config_rejects_schema_violations() -> None:
    raw = json.dumps([{"name": "local", "base_url": "http://localhost", "models": []}])
    with pytest.raises(ProviderConfigError, match="Invalid PGW_PROVIDER_CONFIG"):
        parse_provider_config(raw)
