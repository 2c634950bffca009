"""
Shared fixtures: in-memory SQLite database, mock telephony, fake LLM.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from carecall.calls.models import CallKind, CallRecord
from carecall.calls.repository import CallRecordRepository
from carecall.dialogue.config import ConversationConfig
from carecall.dialogue.llm.errors import LLMProviderError
from carecall.dialogue.llm.models import ChatRequest, ChatResponse
from carecall.dialogue.models import CallSession
from carecall.dialogue.orchestrator import CallOrchestrator
from carecall.dialogue.session_store import SessionStore
from carecall.members.repository import MemberRepository
from carecall.shared.database import DatabaseManager
from carecall.telephony.config import ProviderType, TelephonyConfig
from carecall.telephony.mock_adapter import MockTelephonyAdapter

SQLITE_URL = "sqlite+aiosqlite://"
RESPOND_URL = "https://carecall.example/webhooks/telephony/voice/respond"
MEMBER_ID = "m000000001"
MEMBER_PHONE = "010-1234-5678"


class FakeCompleter:
    """Returns canned replies and records every session it was asked about."""

    def __init__(self, replies: list[str] | None = None, fail: bool = False) -> None:
        self.replies = list(replies or [])
        self.fail = fail
        self.sessions: list[CallSession] = []

    async def complete(self, session: CallSession) -> str:
        self.sessions.append(session)
        if self.fail:
            raise LLMProviderError("boom", trace_id=session.call_id)
        if self.replies:
            return self.replies.pop(0)
        return f"reply {len(self.sessions)}"

    @property
    def calls(self) -> int:
        return len(self.sessions)


class FakeGateway:
    """LLMGateway double returning a fixed content string."""

    def __init__(self, content: str = "", error: Exception | None = None) -> None:
        self.content = content
        self.error = error
        self.requests: list[ChatRequest] = []

    @property
    def default_model(self) -> str:
        return "fake-model"

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return ChatResponse(
            content=self.content,
            model="fake-model",
            trace_id=request.trace_id,
            latency_ms=1.0,
        )


class RecordingAnalyzer:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, datetime]] = []
        self.error = error

    async def analyze(self, member_id: str, anchor: datetime) -> None:
        self.calls.append((member_id, anchor))
        if self.error is not None:
            raise self.error


@pytest.fixture
def telephony_config() -> TelephonyConfig:
    return TelephonyConfig(
        provider_type=ProviderType.MOCK,
        twilio_account_sid="",
        twilio_auth_token="",
        twilio_from_number="+15550001111",
        webhook_base_url="https://carecall.example",
        validate_signatures=False,
    )


@pytest.fixture
def mock_provider(telephony_config: TelephonyConfig) -> MockTelephonyAdapter:
    return MockTelephonyAdapter(telephony_config)


@pytest.fixture
def conversation_config() -> ConversationConfig:
    return ConversationConfig(
        max_turns=10,
        hangup_keyword="종료",
        voicemail_phrases=["음성사서함", "leave a message"],
    )


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[DatabaseManager, None]:
    engine = create_async_engine(
        SQLITE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    db = DatabaseManager(database_url=SQLITE_URL, engine=engine)
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def member_id(database: DatabaseManager) -> str:
    async with database.session() as session:
        await MemberRepository(session).create(MEMBER_ID, MEMBER_PHONE, name="홍길동")
    return MEMBER_ID


async def create_record(
    database: DatabaseManager,
    member_id: str,
    provider_call_id: str | None,
    requested_at: datetime | None = None,
    transcript: str | None = None,
) -> int:
    async with database.session() as session:
        repo = CallRecordRepository(session)
        record = await repo.create(member_id, CallKind.AUTO, requested_at=requested_at)
        if provider_call_id is not None:
            await repo.attach_provider_call_id(record.id, provider_call_id)
        if transcript is not None:
            record.transcript = transcript
        return record.id


async def load_record(database: DatabaseManager, record_id: int) -> CallRecord:
    async with database.session() as session:
        record = await CallRecordRepository(session).get_by_id(record_id)
        assert record is not None
        return record


@pytest.fixture
def completer() -> FakeCompleter:
    return FakeCompleter()


@pytest.fixture
def analyzer() -> RecordingAnalyzer:
    return RecordingAnalyzer()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def orchestrator(
    store: SessionStore,
    completer: FakeCompleter,
    mock_provider: MockTelephonyAdapter,
    database: DatabaseManager,
    conversation_config: ConversationConfig,
    analyzer: RecordingAnalyzer,
) -> CallOrchestrator:
    return CallOrchestrator(
        store=store,
        completer=completer,
        provider=mock_provider,
        database=database,
        respond_url=RESPOND_URL,
        config=conversation_config,
        analyzer=analyzer,
    )


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
