"""
Tests for mapping a call session onto a chat-completion request.
"""

import pytest

from carecall.dialogue.completion import CompletionService
from carecall.dialogue.llm import LLMError, MessageRole
from carecall.dialogue.llm.prompts import COUNSELOR_SYSTEM_PROMPT
from carecall.dialogue.models import CallSession, Speaker

from conftest import FakeGateway


@pytest.fixture
def session() -> CallSession:
    return (
        CallSession("CA42")
        .with_turn(Speaker.ASSISTANT, "안녕하세요")
        .with_turn(Speaker.USER, "요즘 잠을 잘 못 자요")
        .with_turn(Speaker.SYSTEM, "note")
    )


def test_build_request_maps_turns(session: CallSession) -> None:
    request = CompletionService(FakeGateway()).build_request(session)

    assert [m.role for m in request.messages] == [
        MessageRole.SYSTEM,
        MessageRole.ASSISTANT,
        MessageRole.USER,
    ]
    assert request.messages[0].content == COUNSELOR_SYSTEM_PROMPT
    assert request.messages[2].content == "요즘 잠을 잘 못 자요"
    assert request.trace_id == "CA42"
    assert request.max_tokens == 300


@pytest.mark.asyncio
async def test_complete_returns_stripped_reply(session: CallSession) -> None:
    gateway = FakeGateway(content="  많이 힘드시겠어요.  ")

    reply = await CompletionService(gateway, system_prompt="custom").complete(session)

    assert reply == "많이 힘드시겠어요."
    assert gateway.requests[0].messages[0].content == "custom"


@pytest.mark.asyncio
async def test_empty_reply_is_an_error(session: CallSession) -> None:
    with pytest.raises(LLMError):
        await CompletionService(FakeGateway(content="   ")).complete(session)
