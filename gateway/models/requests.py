from typing import Any, Literal

from pydantic import BaseModel, Field

# Plain text, or OpenAI-style content parts (e.g. image_url for vision models).
MessageContent = str | list[dict[str, Any]]


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: MessageContent


class ChatCompletionRequest(BaseModel):
    model: str = Field(min_length=1)
    messages: list[ChatMessage] = Field(default_factory=list)
    stream: bool = True
    system_prompt: str | None = None
    temperature: float | None = Field(default=None, ge=0, le=2)


class DeepResearchRequest(BaseModel):
    query: str = Field(min_length=1)


class DeepResearchResponse(BaseModel):
    context: str


class ModelEntry(BaseModel):
    id: str
    provider: str


class ModelList(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelEntry]
