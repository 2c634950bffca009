"""
Request and response shapes exchanged with the LLM gateway.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class LLMProvider(str, Enum):
    OPENAI = "openai"


class MessageRole(str, Enum):
    """Chat roles understood by chat-completion APIs."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class ChatRequest(BaseModel):
    """One completion request.

    ``trace_id`` ties gateway logs to the caller: the provider call id for a
    conversation turn, the member id for a status classification.
    """

    messages: list[ChatMessage]
    model: str | None = None
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=300, gt=0)
    trace_id: str | None = None


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatResponse(BaseModel):
    content: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    finish_reason: str | None = None
    trace_id: str | None = None
    latency_ms: float = 0.0
