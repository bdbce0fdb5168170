import asyncio

import httpx
import pytest

from gateway.core.errors import IdentityProviderError, UnauthorizedError
from gateway.identity.client import (
    StaticIdentityResolver,
    SupabaseIdentityResolver,
    bearer_token,
)


def test_bearer_token_extracts_token() -> None:
    assert bearer_token("Bearer abc.def") == "abc.def"


@pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "Bearer    "])
def test_bearer_token_rejects_missing_or_malformed(header: str | None) -> None:
    with pytest.raises(UnauthorizedError, match="Missing bearer token"):
        bearer_token(header)


def test_static_resolver() -> None:
    resolver = StaticIdentityResolver({"t1": "user-1"})
    assert asyncio.run(resolver.resolve("t1")) == "user-1"
    with pytest.raises(UnauthorizedError, match="Invalid token"):
        asyncio.run(resolver.resolve("t2"))


def test_supabase_resolver_returns_user_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "0b9c-user", "email": "a@b.test"})

    resolver = SupabaseIdentityResolver(
        base_url="https://proj.supabase.co/",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )
    assert asyncio.run(resolver.resolve("jwt")) == "0b9c-user"
    assert str(seen[0].url) == "https://proj.supabase.co/auth/v1/user"
    assert seen[0].headers["apikey"] == "anon-key"
    assert seen[0].headers["authorization"] == "Bearer jwt"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(401, json={"msg": "invalid JWT"}),
        httpx.Response(403, json={"msg": "forbidden"}),
        httpx.Response(200, json={"email": "no-id@b.test"}),
    ],
)
def test_supabase_resolver_rejects(response: httpx.Response) -> None:
    resolver = SupabaseIdentityResolver(
        base_url="https://proj.supabase.co",
        api_key="anon-key",
        transport=httpx.MockTransport(lambda request: response),
    )
    with pytest.raises(UnauthorizedError, match="Invalid token"):
        asyncio.run(resolver.resolve("jwt"))


def _raise_connect_error(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused")


def _raise_read_timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ReadTimeout("read timed out")


@pytest.mark.parametrize(
    ("handler", "message"),
    [
        (_raise_connect_error, "Auth provider error: connection refused"),
        (_raise_read_timeout, "Auth provider error: request timed out"),
        (lambda request: httpx.Response(503, text="upstream down"), "Service Unavailable"),
        (lambda request: httpx.Response(200, text="<html>oops</html>"), "invalid JSON response"),
    ],
)
def test_supabase_resolver_provider_failures(handler, message: str) -> None:
    resolver = SupabaseIdentityResolver(
        base_url="https://proj.supabase.co",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )
    with pytest.raises(IdentityProviderError, match=message) as exc_info:
        asyncio.run(resolver.resolve("jwt"))
    assert exc_info.value.status_code == 400
