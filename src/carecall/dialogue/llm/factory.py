"""
Builds the configured LLM gateway.
"""

from carecall.config import Settings, get_settings
from carecall.dialogue.llm.errors import LLMProviderError
from carecall.dialogue.llm.gateway import LLMGateway
from carecall.dialogue.llm.models import LLMProvider
from carecall.dialogue.llm.openai_adapter import OpenAIAdapter
from carecall.shared.logging import get_logger

logger = get_logger(__name__)


def create_llm_gateway(
    provider: LLMProvider | str,
    api_key: str,
    model: str = "gpt-4o-mini",
    timeout_seconds: float = 30.0,
    max_retries: int = 3,
    base_url: str | None = None,
) -> LLMGateway:
    """Return a gateway for ``provider``.

    A missing API key is not fatal: the gateway is still built, every request
    fails with ``LLMAuthenticationError`` and callers fall back to scripted
    lines.

    Raises:
        LLMProviderError: ``provider`` is not supported.
    """
    try:
        provider = LLMProvider(str(getattr(provider, "value", provider)).lower())
    except ValueError:
        raise LLMProviderError(
            f"Unsupported LLM provider: {provider!s} "
            f"(supported: {', '.join(p.value for p in LLMProvider)})"
        ) from None

    if not api_key:
        logger.warning("LLM API key is empty; completions will fail", extra={"provider": provider.value})

    logger.info(
        "LLM gateway configured",
        extra={"provider": provider.value, "model": model, "timeout_seconds": timeout_seconds},
    )
    return OpenAIAdapter(
        api_key=api_key,
        default_model=model,
        timeout_seconds=timeout_seconds,
        max_retries=max_retries,
        base_url=base_url,
    )


def create_llm_gateway_from_settings(settings: Settings | None = None) -> LLMGateway:
    settings = settings or get_settings()
    return create_llm_gateway(
        provider=settings.llm_provider,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.llm_timeout_seconds,
    )
