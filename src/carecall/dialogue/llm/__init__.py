"""
LLM gateway for chat completions.
"""

from carecall.dialogue.llm.errors import (
    LLMAuthenticationError,
    LLMError,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from carecall.dialogue.llm.factory import create_llm_gateway, create_llm_gateway_from_settings
from carecall.dialogue.llm.gateway import LLMGateway
from carecall.dialogue.llm.models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    LLMProvider,
    MessageRole,
    TokenUsage,
)
from carecall.dialogue.llm.openai_adapter import OpenAIAdapter

__all__ = [
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "LLMAuthenticationError",
    "LLMError",
    "LLMGateway",
    "LLMProvider",
    "LLMProviderError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "MessageRole",
    "OpenAIAdapter",
    "TokenUsage",
    "create_llm_gateway",
    "create_llm_gateway_from_settings",
]
