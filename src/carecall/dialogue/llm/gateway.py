"""
LLM gateway interface.
"""

from typing import Protocol, runtime_checkable

from carecall.dialogue.llm.models import ChatRequest, ChatResponse


@runtime_checkable
class LLMGateway(Protocol):
    """Anything that can turn a ``ChatRequest`` into a ``ChatResponse``."""

    @property
    def default_model(self) -> str:
        ...

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Run one completion.

        Raises:
            LLMTimeoutError: the provider did not answer in time.
            LLMRateLimitError: still rate limited after the last retry.
            LLMAuthenticationError: the API key was rejected.
            LLMProviderError: any other provider failure.
        """
        ...
