"""Bearer token -> user id resolution."""

from typing import Protocol

import httpx

from gateway.core.errors import IdentityProviderError, UnauthorizedError


class IdentityResolver(Protocol):
    async def resolve(self, token: str) -> str:
        """Return the user id for ``token`` or raise ``UnauthorizedError``."""


def bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise UnauthorizedError("Missing bearer token")
    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        raise UnauthorizedError("Missing bearer token")
    return token


class StaticIdentityResolver:
    """Fixed token table, for development and tests."""

    def __init__(self, tokens: dict[str, str]):
        self._tokens = dict(tokens)

    async def resolve(self, token: str) -> str:
        user_id = self._tokens.get(token)
        if user_id is None:
            raise UnauthorizedError("Invalid token")
        return user_id


class SupabaseIdentityResolver:
    """Validates the caller's access token against Supabase Auth."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_s
        self._transport = transport

    async def resolve(self, token: str) -> str:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(f"{self._base_url}/auth/v1/user", headers=headers)
        except httpx.TimeoutException as exc:
            raise IdentityProviderError("Auth provider error: request timed out") from exc
        except httpx.HTTPError as exc:
            raise IdentityProviderError(f"Auth provider error: {exc}") from exc

        if resp.status_code in {401, 403}:
            raise UnauthorizedError("Invalid token")
        if resp.status_code >= 400:
            raise IdentityProviderError(
                f"Auth provider error: {resp.reason_phrase or resp.status_code}"
            )

        try:
            payload = resp.json()
        except ValueError as exc:
            raise IdentityProviderError("Auth provider error: invalid JSON response") from exc
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise UnauthorizedError("Invalid token")
        return user_id
