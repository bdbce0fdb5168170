from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


class ProviderConfigError(Exception):
    """Raised when the provider table cannot be built from configuration."""


@dataclass(frozen=True)
class ProviderConfig:
    """One upstream OpenAI-compatible completion endpoint and the models it serves."""

    name: str
    base_url: str
    api_key: str
    models: tuple[str, ...]
    default_temperature: float = 0.7
    forced_temperature: float | None = None
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    timeout_s: float = 60.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))
        object.__setattr__(self, "extra_headers", MappingProxyType(dict(self.extra_headers)))

    @property
    def completions_url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def request_headers(self) -> dict[str, str]:
        headers = {
            **self.auth_headers(),
            "Content-Type": "application/json",
        }
        headers.update(self.extra_headers)
        return headers

    def temperature_for(self, requested: float | None) -> float:
        if self.forced_temperature is not None:
            return self.forced_temperature
        if requested is not None:
            return requested
        return self.default_temperature
