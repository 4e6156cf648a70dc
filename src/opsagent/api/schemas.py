"""
Pydantic schemas for the OpenAI-compatible agent API.

Defines request/response models for /v1/models and /v1/chat/completions.
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from ..domain.entities import Message, MessageRole, TokenUsage

# =============================================================================
# Constants
# =============================================================================

MAX_MESSAGE_LENGTH = 100_000


def _now() -> int:
    return int(time.time())


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4()}"


# =============================================================================
# Request Schemas
# =============================================================================


class ChatMessage(BaseModel):
    """A message in an OpenAI-style request."""

    role: Literal["system", "user", "assistant"]
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH)

    def to_domain(self) -> Message:
        return Message(role=MessageRole(self.role), content=self.content)


class ChatCompletionRequest(BaseModel):
    """Request body for /v1/chat/completions."""

    model: str
    messages: list[ChatMessage] = Field(..., min_length=1)
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "model": "opsagent",
                "messages": [{"role": "user", "content": "What time is it in Berlin?"}],
                "stream": False,
            }
        }
    }

    def last_user_content(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return None


# =============================================================================
# Response Schemas
# =============================================================================


class CompletionUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_usage(cls, usage: TokenUsage) -> "CompletionUsage":
        return cls(
            prompt_tokens=usage.input_tokens,
            completion_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
        )


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class CompletionChoice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: Literal["stop"] = "stop"


class ChatCompletionResponse(BaseModel):
    """Non-streaming chat completion."""

    id: str = Field(default_factory=new_completion_id)
    object: Literal["chat.completion"] = "chat.completion"
    created: int = Field(default_factory=_now)
    model: str
    choices: list[CompletionChoice]
    usage: CompletionUsage = Field(default_factory=CompletionUsage)

    @classmethod
    def build(cls, content: str, model: str, usage: TokenUsage) -> "ChatCompletionResponse":
        return cls(
            model=model,
            choices=[CompletionChoice(message=AssistantMessage(content=content))],
            usage=CompletionUsage.from_usage(usage),
        )


class ChunkChoice(BaseModel):
    index: int = 0
    delta: dict[str, Any] = Field(default_factory=dict)
    finish_reason: Optional[Literal["stop"]] = None


class ChatCompletionChunk(BaseModel):
    """One server-sent event in a streaming completion."""

    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int = Field(default_factory=_now)
    model: str
    choices: list[ChunkChoice]

    @classmethod
    def build(
        cls,
        completion_id: str,
        model: str,
        content: Optional[str] = None,
        role: Optional[str] = None,
        finish_reason: Optional[Literal["stop"]] = None,
    ) -> "ChatCompletionChunk":
        delta: dict[str, Any] = {}
        if role is not None:
            delta["role"] = role
        if content is not None:
            delta["content"] = content
        return cls(
            id=completion_id,
            model=model,
            choices=[ChunkChoice(delta=delta, finish_reason=finish_reason)],
        )


class ModelInfo(BaseModel):
    id: str
    object: Literal["model"] = "model"
    created: int = Field(default_factory=_now)
    owned_by: str = "opsagent"


class ModelList(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelInfo]


class ErrorBody(BaseModel):
    message: str
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorBody
