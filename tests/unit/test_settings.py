from zoneinfo import ZoneInfo

import pytest

from gateway.config.settings import (
    DEFAULT_SYSTEM_PROMPT,
    Settings,
    clear_settings_cache,
    get_settings,
)


def test_model_sets_parse_values() -> None:
    settings = Settings(openrouter_models=" a/b , c ,", nous_models="Hermes-4-405B")
    assert settings.openrouter_model_set == ("a/b", "c")
    assert settings.nous_model_set == ("Hermes-4-405B",)


def test_static_token_map_parses_pairs() -> None:
    settings = Settings(identity_static_tokens="t1:user-1, t2 : user-2, broken, :x, y:")
    assert settings.identity_static_token_map == {"t1": "user-1", "t2": "user-2"}


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PGW_RESEARCH_DEFAULT_LIMIT", raising=False)
    monkeypatch.delenv("PGW_DEFAULT_SYSTEM_PROMPT", raising=False)
    settings = Settings()
    assert settings.research_default_limit == 300
    assert settings.nous_forced_temperature == 0.7
    assert settings.default_system_prompt == DEFAULT_SYSTEM_PROMPT
    assert settings.cors_origin_list == ["*"]
    assert "Hermes-4.3-36B" in settings.nous_model_set


def test_env_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PGW_RESEARCH_DEFAULT_LIMIT", "50")
    monkeypatch.setenv("PGW_USAGE_BACKEND", " SQLite ")
    clear_settings_cache()
    try:
        settings = get_settings()
        assert settings.research_default_limit == 50
        assert settings.usage_backend_normalized == "sqlite"
    finally:
        clear_settings_cache()


def test_quota_timezone_is_optional() -> None:
    assert Settings(quota_timezone=None).quota_tzinfo is None
    assert Settings(quota_timezone="America/Sao_Paulo").quota_tzinfo == ZoneInfo(
        "America/Sao_Paulo"
    )


def test_autoprovision_can_be_disabled(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PGW_USAGE_AUTOPROVISION", "false")
    assert Settings().usage_autoprovision is False
