"""
Errors raised by LLM gateways.

Callers catch ``LLMError`` and degrade: a conversation turn speaks the
fallback line, a status classification falls back to "확인 필요".
"""


class LLMError(Exception):
    """Base class for every gateway failure."""

    def __init__(
        self,
        message: str,
        trace_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.trace_id = trace_id
        self.status_code = status_code


class LLMTimeoutError(LLMError):
    pass


class LLMRateLimitError(LLMError):
    def __init__(self, message: str, retry_after: float | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    pass


class LLMProviderError(LLMError):
    """The provider answered with an error or an unusable body."""
