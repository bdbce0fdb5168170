import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gateway.api.routes import router
from gateway.config.settings import Settings, get_settings
from gateway.core.errors import (
    ErrorKind,
    GatewayError,
    app_error_response,
    request_id_from_request,
)
from gateway.core.logging import configure_logging
from gateway.identity.client import (
    IdentityResolver,
    StaticIdentityResolver,
    SupabaseIdentityResolver,
)
from gateway.metrics import metrics_router
from gateway.middleware.request_id import RequestIDMiddleware
from gateway.providers.http_openai import HTTPOpenAIStreamer
from gateway.providers.registry import build_provider_registry
from gateway.quota.ledger import QuotaLedger
from gateway.quota.stores import UsageStore, create_usage_store
from gateway.search.tavily import TavilySearchClient
from gateway.services.completion_router import CompletionRouter
from gateway.services.research_gateway import ResearchGateway

logger = logging.getLogger("pgw.app")

CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-title",
    "x-pro-mode",
    "x-model-id",
    "http-referer",
]


def _build_identity_resolver(settings: Settings) -> IdentityResolver:
    backend = settings.identity_backend_normalized
    if backend == "static":
        return StaticIdentityResolver(settings.identity_static_token_map)
    if backend == "supabase":
        if not settings.supabase_url or not settings.supabase_api_key:
            raise RuntimeError(
                "PGW_SUPABASE_URL and PGW_SUPABASE_API_KEY are required when "
                "identity_backend=supabase"
            )
        return SupabaseIdentityResolver(
            base_url=settings.supabase_url,
            api_key=settings.supabase_api_key,
            timeout_s=settings.identity_timeout_s,
        )
    raise RuntimeError(f"Unsupported PGW_IDENTITY_BACKEND value: {backend}")


def create_app(
    settings: Settings | None = None,
    *,
    usage_store: UsageStore | None = None,
    identity: IdentityResolver | None = None,
    streamer: HTTPOpenAIStreamer | None = None,
    search_client: TavilySearchClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(title="Prometheus Gateway", version="0.1.0")

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=CORS_ALLOW_HEADERS,
        expose_headers=["x-request-id", "x-research-remaining"],
    )

    completion_router = CompletionRouter(
        registry=build_provider_registry(settings),
        default_system_prompt=settings.default_system_prompt,
        streamer=streamer,
    )
    ledger = QuotaLedger(
        store=usage_store
        or create_usage_store(
            backend=settings.usage_backend_normalized,
            sqlite_path=settings.usage_sqlite_path,
            redis_url=settings.usage_redis_url,
            redis_prefix=settings.usage_redis_prefix,
        ),
        default_limit=settings.research_default_limit,
        tz=settings.quota_tzinfo,
        autoprovision=settings.usage_autoprovision,
    )
    research_gateway = ResearchGateway(
        identity=identity or _build_identity_resolver(settings),
        ledger=ledger,
        search_client=search_client
        or TavilySearchClient(
            api_key=settings.tavily_api_key,
            url=settings.tavily_url,
            max_results=settings.search_max_results,
            search_depth=settings.search_depth,
            timeout_s=settings.search_timeout_s,
        ),
    )
    app.state.settings = settings
    app.state.completion_router = completion_router
    app.state.research_gateway = research_gateway

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        request_id = request_id_from_request(request)
        log_extra = {
            "request_id": request_id,
            "error_kind": exc.kind.value,
            "status_code": exc.status_code,
        }
        if exc.expected:
            logger.info("request_rejected", extra=log_extra)
        elif exc.status_code >= 500:
            logger.error("request_failed: %s", exc.message, extra=log_extra)
        else:
            logger.warning("request_failed: %s", exc.message, extra=log_extra)
        return app_error_response(exc.kind, exc.message, request_id)

    @app.exception_handler(RequestValidationError)
    async def validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = request_id_from_request(request)
        return app_error_response(ErrorKind.INVALID_REQUEST, str(exc), request_id)

    @app.exception_handler(Exception)
    async def unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = request_id_from_request(request)
        logger.error(
            "unhandled_exception",
            exc_info=exc,
            extra={"request_id": request_id, "error_kind": ErrorKind.INTERNAL_ERROR.value},
        )
        return app_error_response(ErrorKind.INTERNAL_ERROR, "Internal server error", request_id)

    app.include_router(router)
    if settings.metrics_enabled:
        app.include_router(metrics_router)
    return app
