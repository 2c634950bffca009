"""
OpenAI chat-completions adapter.

The HTTP exchange is blocking (``httpx.Client``) and runs in a worker thread,
so a slow completion never stalls webhook handling for other calls.
"""

import time
from typing import Any, Callable

import anyio
import httpx

from carecall.dialogue.llm.errors import (
    LLMAuthenticationError,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from carecall.dialogue.llm.models import ChatRequest, ChatResponse, TokenUsage
from carecall.shared.logging import get_logger

logger = get_logger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"

# Statuses worth another attempt after a backoff.
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class OpenAIAdapter:
    """``LLMGateway`` backed by the OpenAI chat-completions endpoint."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
        sleep_func: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Args:
            api_key: Bearer token sent with every request.
            default_model: Used when a request names no model.
            timeout_seconds: Per-attempt HTTP timeout.
            max_retries: Total attempts for connection errors and retryable statuses.
            base_url: Alternative API root (proxies, compatible servers).
            http_client: Pre-built client; tests pass one over ``httpx.MockTransport``.
            sleep_func: Backoff sleep; tests pass a no-op.
        """
        self._api_key = api_key
        self._default_model = default_model
        self._timeout_seconds = timeout_seconds
        self._max_retries = max(1, max_retries)
        self._endpoint = f"{(base_url or OPENAI_API_BASE).rstrip('/')}/chat/completions"
        self._client = http_client
        self._sleep = sleep_func

    @property
    def default_model(self) -> str:
        return self._default_model

    def _get_client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=httpx.Timeout(self._timeout_seconds))
        return self._client

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        return await anyio.to_thread.run_sync(self.chat_completion_sync, request)

    def chat_completion_sync(self, request: ChatRequest) -> ChatResponse:
        model = request.model or self._default_model
        body: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }

        started = time.monotonic()
        response = self._post_with_retry(body, request.trace_id)
        latency_ms = (time.monotonic() - started) * 1000

        try:
            data = response.json()
            choice = data["choices"][0]
            content = choice["message"]["content"] or ""
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise LLMProviderError(
                "Malformed completion body",
                trace_id=request.trace_id,
                status_code=response.status_code,
            ) from e

        logger.info(
            "Completion received",
            extra={"trace_id": request.trace_id, "model": model, "latency_ms": round(latency_ms, 1)},
        )
        return ChatResponse(
            content=content.strip(),
            model=data.get("model", model),
            usage=TokenUsage(**(data.get("usage") or {})),
            finish_reason=choice.get("finish_reason"),
            trace_id=request.trace_id,
            latency_ms=latency_ms,
        )

    def _post_with_retry(self, body: dict[str, Any], trace_id: str | None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        delay = 1.0

        attempt = 0
        while True:
            attempt += 1
            last_attempt = attempt == self._max_retries
            try:
                response = self._get_client().post(
                    self._endpoint, json=body, headers=headers, timeout=self._timeout_seconds
                )
            except httpx.TimeoutException as e:
                logger.error("Completion timed out", extra={"trace_id": trace_id})
                raise LLMTimeoutError(
                    f"No answer within {self._timeout_seconds}s", trace_id=trace_id
                ) from e
            except httpx.HTTPError as e:
                if last_attempt:
                    raise LLMProviderError(
                        f"Completion failed after {self._max_retries} attempts: {e}",
                        trace_id=trace_id,
                    ) from e
                logger.warning(
                    "Completion transport error; retrying",
                    extra={"trace_id": trace_id, "attempt": attempt, "error": str(e)},
                )
                self._sleep(delay)
                delay *= 2
                continue

            if response.status_code == 200:
                return response
            if response.status_code == 401:
                raise LLMAuthenticationError("API key rejected", trace_id=trace_id, status_code=401)

            if response.status_code in RETRYABLE_STATUS and not last_attempt:
                wait = _retry_after(response, delay)
                logger.warning(
                    "Completion not available; retrying",
                    extra={
                        "trace_id": trace_id,
                        "attempt": attempt,
                        "status_code": response.status_code,
                        "wait_seconds": wait,
                    },
                )
                self._sleep(wait)
                delay *= 2
                continue

            if response.status_code == 429:
                raise LLMRateLimitError(
                    "Rate limited",
                    retry_after=_retry_after(response, None),
                    trace_id=trace_id,
                    status_code=429,
                )
            raise LLMProviderError(
                f"OpenAI API error {response.status_code}: {_error_message(response)}",
                trace_id=trace_id,
                status_code=response.status_code,
            )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def _retry_after(response: httpx.Response, default: float | None) -> float | None:
    raw = response.headers.get("Retry-After")
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json()["error"]["message"])
    except (KeyError, TypeError, ValueError):
        return response.text
