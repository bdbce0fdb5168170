"""Tavily web search client and the context block built from its results."""

from dataclasses import dataclass, field
from typing import Any

import httpx

from gateway.core.errors import SearchProviderError


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    content: str


@dataclass(frozen=True)
class SearchContext:
    answer: str | None = None
    results: tuple[SearchResult, ...] = field(default_factory=tuple)

    def to_context(self) -> str:
        """Fold the answer and results into the text block handed to the model."""
        context = ""
        if self.answer:
            context += f"Summarized Answer: {self.answer}\n\n"
        if self.results:
            context += "Web Search Results:\n"
            for index, result in enumerate(self.results, start=1):
                context += (
                    f"[{index}] {result.title}\nURL: {result.url}\nContent: {result.content}\n\n"
                )
        return context

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SearchContext":
        raw_answer = payload.get("answer")
        answer = raw_answer if isinstance(raw_answer, str) and raw_answer else None
        raw_results = payload.get("results")
        results: list[SearchResult] = []
        if isinstance(raw_results, list):
            for item in raw_results:
                if not isinstance(item, dict):
                    continue
                results.append(
                    SearchResult(
                        title=str(item.get("title") or ""),
                        url=str(item.get("url") or ""),
                        content=str(item.get("content") or ""),
                    )
                )
        return cls(answer=answer, results=tuple(results))


class TavilySearchClient:
    def __init__(
        self,
        api_key: str,
        url: str = "https://api.tavily.com/search",
        max_results: int = 5,
        search_depth: str = "basic",
        timeout_s: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._url = url
        self._max_results = max_results
        self._search_depth = search_depth
        self._timeout = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def search(self, query: str) -> SearchContext:
        if not self._api_key:
            raise SearchProviderError("TAVILY_API_KEY not configured")

        body = {
            "api_key": self._api_key,
            "query": query,
            "search_depth": self._search_depth,
            "include_answer": True,
            "max_results": self._max_results,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self._url, json=body, headers={"Content-Type": "application/json"}
                )
        except httpx.TimeoutException as exc:
            raise SearchProviderError("Tavily API error: request timed out") from exc
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"Tavily API error: {exc}") from exc

        if resp.status_code >= 400:
            raise SearchProviderError(f"Tavily API error: {resp.reason_phrase or resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise SearchProviderError("Tavily API error: invalid JSON response") from exc
        if not isinstance(payload, dict):
            raise SearchProviderError("Tavily API error: unexpected response shape")
        return SearchContext.from_payload(payload)
