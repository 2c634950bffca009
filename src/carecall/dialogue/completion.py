"""
Maps a live session onto a chat-completion request.
"""

from carecall.dialogue.llm.gateway import LLMGateway
from carecall.dialogue.llm.errors import LLMProviderError
from carecall.dialogue.llm.models import ChatMessage, ChatRequest, MessageRole
from carecall.dialogue.llm.prompts import COUNSELOR_SYSTEM_PROMPT
from carecall.dialogue.models import CallSession, Speaker

_ROLE_BY_SPEAKER = {
    Speaker.USER: MessageRole.USER,
    Speaker.ASSISTANT: MessageRole.ASSISTANT,
}


class CompletionService:
    """Produces the next assistant utterance for a session."""

    def __init__(
        self,
        gateway: LLMGateway,
        system_prompt: str = COUNSELOR_SYSTEM_PROMPT,
        max_tokens: int = 300,
    ) -> None:
        self._gateway = gateway
        self._system_prompt = system_prompt
        self._max_tokens = max_tokens

    def build_request(self, session: CallSession) -> ChatRequest:
        messages = [ChatMessage(role=MessageRole.SYSTEM, content=self._system_prompt)]
        # System turns are bookkeeping, not dialogue.
        messages.extend(
            ChatMessage(role=_ROLE_BY_SPEAKER[t.speaker], content=t.text)
            for t in session.turns
            if t.speaker in _ROLE_BY_SPEAKER
        )
        return ChatRequest(
            messages=messages,
            max_tokens=self._max_tokens,
            trace_id=session.call_id,
        )

    async def complete(self, session: CallSession) -> str:
        """Return the reply text.

        Raises:
            LLMError: the gateway failed or returned an empty reply.
        """
        response = await self._gateway.chat_completion(self.build_request(session))
        text = response.content.strip()
        if not text:
            raise LLMProviderError("Empty completion", trace_id=session.call_id)
        return text
