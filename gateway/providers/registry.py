"""Immutable model -> provider routing table."""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, cast

from jsonschema import ValidationError, validate

from gateway.config.settings import Settings
from gateway.core.errors import UnknownModelError
from gateway.providers.base import ProviderConfig, ProviderConfigError

logger = logging.getLogger("pgw.providers")

SCHEMA_PATH = Path(__file__).resolve().parents[1] / "contracts" / "provider-config.schema.json"


class ProviderRegistry:
    """Lookup table keyed by model id; every model belongs to exactly one provider.

    The table is frozen after construction, so concurrent readers need no locking.
    """

    def __init__(self, providers: Iterable[ProviderConfig]) -> None:
        by_name: dict[str, ProviderConfig] = {}
        by_model: dict[str, ProviderConfig] = {}
        for provider in providers:
            if provider.name in by_name:
                raise ProviderConfigError(f"Duplicate provider name: {provider.name}")
            by_name[provider.name] = provider
            for model in provider.models:
                owner = by_model.get(model)
                if owner is not None:
                    raise ProviderConfigError(
                        f"Model {model!r} is claimed by both {owner.name!r} and {provider.name!r}"
                    )
                by_model[model] = provider
            logger.info(
                "provider_registered",
                extra={"provider": provider.name, "model": ",".join(provider.models)},
            )
        self._by_name = by_name
        self._by_model = by_model

    def resolve(self, model: str) -> ProviderConfig:
        provider = self._by_model.get(model)
        if provider is None:
            raise UnknownModelError(model)
        return provider

    def providers(self) -> list[ProviderConfig]:
        return list(self._by_name.values())

    def models(self) -> list[tuple[str, str]]:
        return sorted((model, provider.name) for model, provider in self._by_model.items())

    def __len__(self) -> int:
        return len(self._by_model)


def _load_schema() -> dict[str, Any]:
    return cast(dict[str, Any], json.loads(SCHEMA_PATH.read_text(encoding="utf-8")))


def parse_provider_config(raw: str, default_timeout_s: float = 60.0) -> list[ProviderConfig]:
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderConfigError(f"PGW_PROVIDER_CONFIG is not valid JSON: {exc}") from exc
    try:
        validate(instance=entries, schema=_load_schema())
    except ValidationError as exc:
        raise ProviderConfigError(f"Invalid PGW_PROVIDER_CONFIG: {exc.message}") from exc

    return [
        ProviderConfig(
            name=entry["name"],
            base_url=entry["base_url"],
            api_key=entry["api_key"],
            models=tuple(entry["models"]),
            default_temperature=entry.get("default_temperature", 0.7),
            forced_temperature=entry.get("forced_temperature"),
            extra_headers=entry.get("extra_headers", {}),
            timeout_s=entry.get("timeout_s", default_timeout_s),
        )
        for entry in entries
    ]


def _builtin_providers(settings: Settings) -> list[ProviderConfig]:
    providers: list[ProviderConfig] = []
    if settings.openrouter_model_set:
        providers.append(
            ProviderConfig(
                name="openrouter",
                base_url=settings.openrouter_base_url,
                api_key=settings.openrouter_api_key,
                models=settings.openrouter_model_set,
                default_temperature=settings.default_temperature,
                extra_headers={
                    "HTTP-Referer": settings.openrouter_referer,
                    "X-Title": settings.openrouter_title,
                },
                timeout_s=settings.upstream_timeout_s,
            )
        )
    if settings.nous_model_set:
        providers.append(
            ProviderConfig(
                name="nous",
                base_url=settings.nous_base_url,
                api_key=settings.nous_api_key,
                models=settings.nous_model_set,
                default_temperature=settings.default_temperature,
                forced_temperature=settings.nous_forced_temperature,
                timeout_s=settings.upstream_timeout_s,
            )
        )
    return providers


def build_provider_registry(settings: Settings) -> ProviderRegistry:
    if settings.provider_config.strip():
        providers = parse_provider_config(
            settings.provider_config, default_timeout_s=settings.upstream_timeout_s
        )
    else:
        providers = _builtin_providers(settings)

    for provider in providers:
        if not provider.api_key:
            logger.warning("provider_missing_credential", extra={"provider": provider.name})
    return ProviderRegistry(providers)
