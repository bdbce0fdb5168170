from fastapi import APIRouter, Header, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse

from gateway.models.requests import (
    ChatCompletionRequest,
    DeepResearchRequest,
    DeepResearchResponse,
    ModelEntry,
    ModelList,
)
from gateway.services.completion_router import CompletionRouter
from gateway.services.research_gateway import ResearchGateway

router = APIRouter()


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request) -> dict[str, object]:
    completion_router: CompletionRouter = request.app.state.completion_router
    research_gateway: ResearchGateway = request.app.state.research_gateway
    dependencies = {
        "providers": "ok" if len(completion_router.registry) > 0 else "empty",
        "search": "ok" if research_gateway.search_client.configured else "unconfigured",
    }
    status = "ready" if all(value == "ok" for value in dependencies.values()) else "degraded"
    return {"status": status, "dependencies": dependencies}


@router.get("/models", response_model=ModelList)
def list_models(request: Request) -> ModelList:
    completion_router: CompletionRouter = request.app.state.completion_router
    return ModelList(
        data=[
            ModelEntry(id=model, provider=provider)
            for model, provider in completion_router.registry.models()
        ]
    )


@router.options("/chat-completion")
@router.options("/deep-research")
def preflight() -> Response:
    return Response(status_code=200)


@router.post("/chat-completion")
async def chat_completion(request: Request, payload: ChatCompletionRequest) -> StreamingResponse:
    completion_router: CompletionRouter = request.app.state.completion_router
    stream = await completion_router.open_stream(payload, request_id=request.state.request_id)
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.post("/deep-research", response_model=DeepResearchResponse)
async def deep_research(
    request: Request,
    payload: DeepResearchRequest,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    research_gateway: ResearchGateway = request.app.state.research_gateway
    result = await research_gateway.research(
        authorization, payload.query, request_id=request.state.request_id
    )
    return JSONResponse(
        content=DeepResearchResponse(context=result.context).model_dump(),
        headers={"x-research-remaining": str(result.remaining)},
    )
