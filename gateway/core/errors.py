from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

from fastapi import Request
from fastapi.responses import JSONResponse


class ErrorKind(Enum):
    UNKNOWN_MODEL = "unknown_model"
    INVALID_REQUEST = "invalid_request"
    UPSTREAM_ERROR = "upstream_error"
    UPSTREAM_TIMEOUT = "upstream_timeout"
    PROFILE_NOT_FOUND = "profile_not_found"
    QUOTA_EXCEEDED = "quota_exceeded"
    UNAUTHORIZED = "unauthorized"
    SEARCH_PROVIDER_ERROR = "search_provider_error"
    IDENTITY_PROVIDER_ERROR = "identity_provider_error"
    USAGE_BACKEND_ERROR = "usage_backend_error"
    INTERNAL_ERROR = "internal_error"


STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.UNKNOWN_MODEL: 400,
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.UPSTREAM_ERROR: 500,
    ErrorKind.UPSTREAM_TIMEOUT: 504,
    ErrorKind.PROFILE_NOT_FOUND: 400,
    ErrorKind.QUOTA_EXCEEDED: 403,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.SEARCH_PROVIDER_ERROR: 400,
    ErrorKind.IDENTITY_PROVIDER_ERROR: 400,
    ErrorKind.USAGE_BACKEND_ERROR: 400,
    ErrorKind.INTERNAL_ERROR: 500,
}

# Expected user-facing outcomes; logged at INFO rather than as faults.
EXPECTED_KINDS = frozenset({ErrorKind.QUOTA_EXCEEDED, ErrorKind.UNAUTHORIZED})


@dataclass
class ErrorEnvelope:
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class GatewayError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    @property
    def expected(self) -> bool:
        return self.kind in EXPECTED_KINDS


class InvalidRequestError(GatewayError):
    kind = ErrorKind.INVALID_REQUEST


class UnknownModelError(GatewayError):
    kind = ErrorKind.UNKNOWN_MODEL

    def __init__(self, model: str):
        super().__init__(f"Unknown model: {model}")
        self.model = model


class UpstreamError(GatewayError):
    kind = ErrorKind.UPSTREAM_ERROR

    def __init__(self, status: int, body: str):
        super().__init__(f"Provider Error: {status} - {body}")
        self.status = status
        self.body = body


class UpstreamTimeoutError(GatewayError):
    kind = ErrorKind.UPSTREAM_TIMEOUT


class ProfileNotFoundError(GatewayError):
    kind = ErrorKind.PROFILE_NOT_FOUND

    def __init__(self, user_id: str):
        super().__init__("Perfil de usuário não encontrado.")
        self.user_id = user_id


class QuotaExceededError(GatewayError):
    kind = ErrorKind.QUOTA_EXCEEDED

    def __init__(self, limit: int):
        super().__init__(f"Limite mensal de {limit} pesquisas atingido.")
        self.limit = limit


class UnauthorizedError(GatewayError):
    kind = ErrorKind.UNAUTHORIZED


class SearchProviderError(GatewayError):
    kind = ErrorKind.SEARCH_PROVIDER_ERROR


class IdentityProviderError(GatewayError):
    kind = ErrorKind.IDENTITY_PROVIDER_ERROR


class UsageBackendError(GatewayError):
    """Raised when the usage backend is unavailable or misconfigured."""

    kind = ErrorKind.USAGE_BACKEND_ERROR


def request_id_from_request(request: Request) -> str:
    state_id = getattr(request.state, "request_id", None)
    header_id = request.headers.get("x-request-id")
    return state_id or header_id or str(uuid4())


def app_error_response(kind: ErrorKind, message: str, request_id: str) -> JSONResponse:
    envelope = ErrorEnvelope(message=message)
    response = JSONResponse(status_code=STATUS_BY_KIND[kind], content=envelope.as_dict())
    response.headers["x-request-id"] = request_id
    response.headers["x-error-kind"] = kind.value
    return response
