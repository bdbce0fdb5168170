"""Streaming client for OpenAI-compatible chat completion endpoints."""

from collections.abc import AsyncIterator

import httpx

from gateway.core.errors import UpstreamError, UpstreamTimeoutError
from gateway.providers.base import ProviderConfig


class HTTPOpenAIStreamer:
    """Opens one streaming completion request and relays its decoded bytes.

    The response is opened before anything is yielded, so non-2xx statuses
    surface as ``UpstreamError`` ahead of the first downstream byte. A
    transport failure after that is raised from the iterator itself.
    """

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    async def open_stream(
        self,
        provider: ProviderConfig,
        body: dict[str, object],
    ) -> AsyncIterator[bytes]:
        client = httpx.AsyncClient(timeout=provider.timeout_s, transport=self._transport)
        request = client.build_request(
            "POST",
            provider.completions_url,
            json=body,
            headers=provider.request_headers(),
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            await client.aclose()
            raise UpstreamTimeoutError(
                f"Provider {provider.name} timed out after {provider.timeout_s}s"
            ) from exc
        except httpx.HTTPError as exc:
            await client.aclose()
            raise UpstreamError(status=502, body=f"Cannot connect to provider: {exc}") from exc

        if response.status_code >= 400:
            try:
                error_body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
                await client.aclose()
            raise UpstreamError(status=response.status_code, body=error_body)

        return self._relay(provider, client, response)

    @staticmethod
    async def _relay(
        provider: ProviderConfig,
        client: httpx.AsyncClient,
        response: httpx.Response,
    ) -> AsyncIterator[bytes]:
        # aiter_bytes undoes any Content-Encoding the provider applied.
        try:
            async for chunk in response.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(
                f"Provider {provider.name} stalled mid-stream after {provider.timeout_s}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(status=502, body=f"Stream interrupted: {exc}") from exc
        finally:
            await response.aclose()
            await client.aclose()
