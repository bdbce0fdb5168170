from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are Prometheus, the assistant of the 3Virgulas chat. "
    "Answer accurately, directly and in detail. "
    "Detect the user's language and respond in the same language (Portuguese/English)."
)


def _csv(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PGW_", case_sensitive=False)

    env: str = "dev"
    log_level: str = "INFO"
    default_system_prompt: str = DEFAULT_SYSTEM_PROMPT

    # Upstream LLM providers
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_models: str = Field(
        default=(
            "nousresearch/hermes-3-llama-3.1-405b:free,"
            "nousresearch/hermes-2-pro-llama-3-8b,"
            "cognitivecomputations/dolphin-llama-3-70b,"
            "undi95/toppy-m-7b,"
            "anthropic/claude-3.5-sonnet,"
            "openai/gpt-4-turbo,"
            "meta-llama/llama-3.1-405b-instruct"
        ),
        description="Comma separated model ids routed to OpenRouter",
    )
    openrouter_referer: str = "https://3virgulas.com"
    openrouter_title: str = "3Virgulas Prometheus"
    nous_api_key: str = ""
    nous_base_url: str = "https://inference-api.nousresearch.com/v1"
    nous_models: str = "Hermes-4.3-36B,Hermes-3-Llama-3.1-405B,Hermes-4-405B"
    nous_forced_temperature: float | None = 0.7
    default_temperature: float = 0.7
    upstream_timeout_s: float = 60.0
    provider_config: str = ""

    # Web search
    tavily_api_key: str = ""
    tavily_url: str = "https://api.tavily.com/search"
    search_max_results: int = 5
    search_depth: str = "basic"
    search_timeout_s: float = 20.0

    # Research quota
    research_default_limit: int = 300
    # IANA zone for the monthly boundary; unset means server local time.
    quota_timezone: str | None = None
    usage_autoprovision: bool = True
    usage_backend: str = "memory"
    usage_sqlite_path: Path = Path("artifacts/usage/usage.db")
    usage_redis_url: str | None = None
    usage_redis_prefix: str = "pgw:usage"

    # Identity
    identity_backend: str = "supabase"
    supabase_url: str | None = None
    supabase_api_key: str | None = None
    identity_static_tokens: str = ""
    identity_timeout_s: float = 10.0

    cors_allow_origins: str = "*"
    metrics_enabled: bool = True

    @property
    def openrouter_model_set(self) -> tuple[str, ...]:
        return _csv(self.openrouter_models)

    @property
    def nous_model_set(self) -> tuple[str, ...]:
        return _csv(self.nous_models)

    @property
    def cors_origin_list(self) -> list[str]:
        return list(_csv(self.cors_allow_origins))

    @property
    def quota_tzinfo(self) -> ZoneInfo | None:
        return ZoneInfo(self.quota_timezone) if self.quota_timezone else None

    @property
    def usage_backend_normalized(self) -> str:
        return self.usage_backend.strip().lower()

    @property
    def identity_backend_normalized(self) -> str:
        return self.identity_backend.strip().lower()

    @property
    def identity_static_token_map(self) -> dict[str, str]:
        """Parse ``token:user_id,token:user_id`` into a dict."""
        result: dict[str, str] = {}
        for item in self.identity_static_tokens.split(","):
            item = item.strip()
            if ":" not in item:
                continue
            token, user_id = item.split(":", 1)
            token = token.strip()
            user_id = user_id.strip()
            if not token or not user_id:
                continue
            result[token] = user_id
        return result


@lru_cache
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    get_settings.cache_clear()
