import json
from datetime import datetime

import httpx
import pytest
from fastapi.testclient import TestClient

from gateway.config.settings import Settings
from gateway.main import create_app
from gateway.metrics import reset_metrics
from gateway.providers.http_openai import HTTPOpenAIStreamer
from gateway.quota.stores import InMemoryUsageStore
from gateway.quota.types import UsageAccount
from gateway.search.tavily import TavilySearchClient

HELLO_CHUNK = b'data: {"choices":[{"index":0,"delta":{"content":"hello"}}]}\n\n'
DONE_CHUNK = b"data: [DONE]\n\n"


class UpstreamStub:
    """Records outgoing completion requests and answers with canned SSE bytes."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.chunks: list[bytes] = [HELLO_CHUNK, DONE_CHUNK]
        self.error_body = b""
        self.raise_exc: Exception | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.status_code >= 400:
            return httpx.Response(status_code=self.status_code, content=self.error_body)
        return httpx.Response(
            status_code=200,
            headers={"content-type": "text/event-stream"},
            content=b"".join(self.chunks),
        )

    def last_body(self) -> dict[str, object]:
        return json.loads(self.requests[-1].content.decode("utf-8"))


class SearchStub:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.payload: dict[str, object] = {
            "answer": "Brasília is the capital of Brazil.",
            "results": [
                {
                    "title": "Brasília - Wikipedia",
                    "url": "https://en.wikipedia.org/wiki/Bras%C3%ADlia",
                    "content": "Brasília is the federal capital of Brazil.",
                }
            ],
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code >= 400:
            return httpx.Response(status_code=self.status_code, json={"detail": "boom"})
        return httpx.Response(status_code=200, json=self.payload)


@pytest.fixture(autouse=True)
def _clean_metrics() -> None:
    reset_metrics()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        log_level="WARNING",
        default_system_prompt="default prompt",
        openrouter_api_key="or-key",
        openrouter_models="known-model,meta-llama/llama-3.1-405b-instruct",
        nous_api_key="nous-key",
        nous_models="Hermes-4-405B",
        provider_config="",
        tavily_api_key="tavily-key",
        usage_backend="memory",
        usage_autoprovision=False,
        identity_backend="static",
        identity_static_tokens="token-1:user-1,token-2:user-2",
        metrics_enabled=True,
    )


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def search() -> SearchStub:
    return SearchStub()


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    # user-2 has a valid token but no profile row.
    return InMemoryUsageStore(
        [
            UsageAccount(
                user_id="user-1",
                research_count=0,
                research_limit=300,
                research_last_reset=datetime.now().astimezone(),
            )
        ]
    )


@pytest.fixture
def client(
    settings: Settings,
    upstream: UpstreamStub,
    search: SearchStub,
    usage_store: InMemoryUsageStore,
) -> TestClient:
    app = create_app(
        settings,
        usage_store=usage_store,
        streamer=HTTPOpenAIStreamer(transport=httpx.MockTransport(upstream.handler)),
        search_client=TavilySearchClient(
            api_key=settings.tavily_api_key,
            transport=httpx.MockTransport(search.handler),
        ),
    )
    return TestClient(app)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer token-1"}
