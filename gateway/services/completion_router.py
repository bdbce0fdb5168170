import logging
from collections.abc import AsyncIterator
from time import perf_counter

from gateway.core.errors import GatewayError
from gateway.metrics import inc_counter
from gateway.models.requests import ChatCompletionRequest
from gateway.providers.base import ProviderConfig
from gateway.providers.http_openai import HTTPOpenAIStreamer
from gateway.providers.prompt import assemble_messages
from gateway.providers.registry import ProviderRegistry

logger = logging.getLogger("pgw.chat")


class CompletionRouter:
    """Routes one chat completion to its provider and relays the token stream.

    Lifecycle per request: resolve provider, assemble messages, pick the
    temperature, dispatch a single streaming call, then relay. There is no
    retry and no resumption; a dropped upstream ends the downstream stream.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        default_system_prompt: str,
        streamer: HTTPOpenAIStreamer | None = None,
    ):
        self._registry = registry
        self._default_system_prompt = default_system_prompt
        self._streamer = streamer or HTTPOpenAIStreamer()

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    def build_payload(
        self, payload: ChatCompletionRequest
    ) -> tuple[ProviderConfig, dict[str, object]]:
        provider = self._registry.resolve(payload.model)
        messages = assemble_messages(
            payload.messages,
            override_prompt=payload.system_prompt,
            default_prompt=self._default_system_prompt,
        )
        body: dict[str, object] = {
            "model": payload.model,
            "messages": messages,
            "stream": True,
            "temperature": provider.temperature_for(payload.temperature),
        }
        return provider, body

    async def open_stream(
        self, payload: ChatCompletionRequest, request_id: str | None = None
    ) -> AsyncIterator[bytes]:
        started = perf_counter()
        provider, body = self.build_payload(payload)
        provider_name = provider.name
        logger.info(
            "upstream_dispatch",
            extra={"request_id": request_id, "provider": provider_name, "model": payload.model},
        )
        try:
            upstream = await self._streamer.open_stream(provider, body)
        except GatewayError as exc:
            inc_counter(
                "pgw_upstream_errors_total",
                {"provider": provider_name, "kind": exc.kind.value},
            )
            logger.error(
                "upstream_error",
                extra={
                    "request_id": request_id,
                    "provider": provider_name,
                    "model": payload.model,
                    "error_kind": exc.kind.value,
                },
            )
            raise
        return self._relay(upstream, provider_name, payload.model, request_id, started)

    @staticmethod
    async def _relay(
        upstream: AsyncIterator[bytes],
        provider_name: str,
        model: str,
        request_id: str | None,
        started: float,
    ) -> AsyncIterator[bytes]:
        outcome = "aborted"
        error_kind: str | None = None
        try:
            async for chunk in upstream:
                yield chunk
            outcome = "completed"
        except GatewayError as exc:
            # Headers are already sent; the caller sees a truncated stream.
            outcome = "failed"
            error_kind = exc.kind.value
            inc_counter(
                "pgw_upstream_errors_total",
                {"provider": provider_name, "kind": error_kind},
            )
        finally:
            aclose = getattr(upstream, "aclose", None)
            if aclose is not None:
                await aclose()
            logger.log(
                logging.ERROR if outcome == "failed" else logging.INFO,
                f"upstream_stream_{outcome}",
                extra={
                    "request_id": request_id,
                    "provider": provider_name,
                    "model": model,
                    "error_kind": error_kind,
                    "latency_ms": round((perf_counter() - started) * 1000, 2),
                },
            )
