"""
Tests for the call conversation state machine.

Covers the terminal rules (timeout, hangup keyword, voicemail, max turns),
idempotent finalize, status-callback termination and degradation paths.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from carecall.calls.models import CallRecordStatus
from carecall.dialogue.models import CallSession, Speaker
from carecall.dialogue.orchestrator import CallOrchestrator, FinalizeOutcome
from carecall.dialogue.session_store import SessionStore
from carecall.shared.database import DatabaseManager
from carecall.telephony.interface import CallStatus
from carecall.telephony.mock_adapter import MockTelephonyAdapter

from conftest import RESPOND_URL, FakeCompleter, RecordingAnalyzer, create_record, load_record

CALL_ID = "CA_TEST_0001"


async def start_call(
    orchestrator: CallOrchestrator,
    database: DatabaseManager,
    member_id: str,
    call_id: str = CALL_ID,
) -> int:
    record_id = await create_record(database, member_id, call_id)
    await orchestrator.on_call_started(call_id)
    return record_id


async def say(orchestrator: CallOrchestrator, times: int, call_id: str = CALL_ID) -> None:
    for i in range(times):
        await orchestrator.on_utterance(call_id, f"오늘은 날씨가 좋네요 {i}")


def transcript_of(record) -> list[dict[str, str]]:
    assert record.transcript is not None
    return json.loads(record.transcript)


class TestCallStart:
    @pytest.mark.asyncio
    async def test_greets_and_gathers(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        conversation_config,
    ) -> None:
        document = await orchestrator.on_call_started(CALL_ID)

        assert "<Gather" in document
        assert RESPOND_URL in document
        assert conversation_config.greeting_message in document

        session = store.get(CALL_ID)
        assert session is not None
        assert [t.speaker for t in session.turns] == [Speaker.ASSISTANT]

    @pytest.mark.asyncio
    async def test_duplicate_start_keeps_conversation(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        await start_call(orchestrator, database, member_id)
        await say(orchestrator, 1)

        document = await orchestrator.on_call_started(CALL_ID)

        assert "reply 1" in document
        assert len(store.get(CALL_ID).turns) == 3


class TestConversationTurns:
    @pytest.mark.asyncio
    async def test_turn_appends_user_and_assistant(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        completer: FakeCompleter,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        completer.replies = ["그렇군요. 오늘 산책은 하셨나요?"]
        await start_call(orchestrator, database, member_id)

        document = await orchestrator.on_utterance(CALL_ID, "  잘 지냈어요  ")

        assert "<Gather" in document
        assert "오늘 산책은 하셨나요?" in document
        seen = completer.sessions[0]
        assert seen.turns[-1].speaker == Speaker.USER
        assert seen.turns[-1].text == "잘 지냈어요"

        session = store.get(CALL_ID)
        assert [t.speaker for t in session.turns] == [
            Speaker.ASSISTANT,
            Speaker.USER,
            Speaker.ASSISTANT,
        ]

    @pytest.mark.asyncio
    async def test_completion_failure_speaks_fallback_and_continues(
        self,
        store: SessionStore,
        mock_provider: MockTelephonyAdapter,
        database: DatabaseManager,
        conversation_config,
        member_id: str,
    ) -> None:
        orchestrator = CallOrchestrator(
            store=store,
            completer=FakeCompleter(fail=True),
            provider=mock_provider,
            database=database,
            respond_url=RESPOND_URL,
            config=conversation_config,
        )
        await start_call(orchestrator, database, member_id)

        document = await orchestrator.on_utterance(CALL_ID, "안녕하세요")

        assert "<Gather" in document
        assert conversation_config.fallback_message in document
        assert store.get(CALL_ID).turns[-1].text == conversation_config.fallback_message

    @pytest.mark.asyncio
    async def test_utterance_without_session_starts_one(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        completer: FakeCompleter,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        await create_record(database, member_id, "CA_UNKNOWN")

        document = await orchestrator.on_utterance("CA_UNKNOWN", "여보세요")

        assert "<Gather" in document
        assert completer.calls == 1
        assert store.get("CA_UNKNOWN").user_turn_count == 1

    @pytest.mark.asyncio
    async def test_utterance_after_status_finalize_does_not_reopen_call(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        completer: FakeCompleter,
        database: DatabaseManager,
        member_id: str,
        conversation_config,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)
        await orchestrator.on_status(CALL_ID, CallStatus.COMPLETED, "completed")
        stored = await load_record(database, record_id)

        document = await orchestrator.on_utterance(CALL_ID, "여보세요 들리세요")

        assert "<Hangup/>" in document
        assert "<Gather" not in document
        assert conversation_config.final_message in document
        assert completer.calls == 0
        assert CALL_ID not in store
        assert len(store) == 0
        assert (await load_record(database, record_id)).transcript == stored.transcript

    @pytest.mark.asyncio
    async def test_utterance_for_call_without_record_hangs_up(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        completer: FakeCompleter,
    ) -> None:
        document = await orchestrator.on_utterance("CA_NO_RECORD", "여보세요")

        assert "<Hangup/>" in document
        assert completer.calls == 0
        assert "CA_NO_RECORD" not in store

    @pytest.mark.asyncio
    async def test_concurrent_utterances_on_one_call_are_serialized(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        completer: FakeCompleter,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        original = completer.complete

        async def slow_complete(session: CallSession) -> str:
            await asyncio.sleep(0.01)
            return await original(session)

        completer.complete = slow_complete  # type: ignore[method-assign]
        await start_call(orchestrator, database, member_id)

        await asyncio.gather(
            orchestrator.on_utterance(CALL_ID, "첫 번째"),
            orchestrator.on_utterance(CALL_ID, "두 번째"),
        )

        session = store.get(CALL_ID)
        assert session.user_turn_count == 2
        assert [t.speaker for t in session.turns] == [
            Speaker.ASSISTANT,
            Speaker.USER,
            Speaker.ASSISTANT,
            Speaker.USER,
            Speaker.ASSISTANT,
        ]


class TestTimeout:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("prior_turns", [0, 3, 9])
    @pytest.mark.parametrize("utterance", ["", "   ", None])
    async def test_empty_utterance_fails_with_timeout(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        completer: FakeCompleter,
        database: DatabaseManager,
        conversation_config,
        member_id: str,
        prior_turns: int,
        utterance: str | None,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)
        await say(orchestrator, prior_turns)
        calls_before = completer.calls

        document = await orchestrator.on_utterance(CALL_ID, utterance)

        assert "<Hangup/>" in document
        assert conversation_config.timeout_message in document
        assert completer.calls == calls_before
        assert CALL_ID not in store

        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.FAILED
        assert transcript_of(record)[-1] == {"speaker": "System", "message": "call_ended:timeout"}


class TestHangupKeyword:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("prior_turns", [0, 4, 9])
    async def test_keyword_completes_without_completion(
        self,
        orchestrator: CallOrchestrator,
        completer: FakeCompleter,
        database: DatabaseManager,
        conversation_config,
        member_id: str,
        prior_turns: int,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)
        await say(orchestrator, prior_turns)
        calls_before = completer.calls

        document = await orchestrator.on_utterance(CALL_ID, "이제 통화 종료 할게요")

        assert conversation_config.hangup_message in document
        assert "<Hangup/>" in document
        assert completer.calls == calls_before

        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.COMPLETED
        messages = transcript_of(record)
        assert messages[-1]["message"] == "call_ended:user_request"
        assert all("종료" not in m["message"] for m in messages[:-1])

    @pytest.mark.asyncio
    async def test_keyword_beats_voicemail_on_first_turn(
        self,
        orchestrator: CallOrchestrator,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)

        await orchestrator.on_utterance(CALL_ID, "음성사서함 종료")

        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.COMPLETED
        assert transcript_of(record)[-1]["message"] == "call_ended:user_request"


class TestVoicemail:
    @pytest.mark.asyncio
    async def test_first_utterance_voicemail_fails_call(
        self,
        orchestrator: CallOrchestrator,
        completer: FakeCompleter,
        database: DatabaseManager,
        conversation_config,
        member_id: str,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)

        document = await orchestrator.on_utterance(CALL_ID, "지금은 통화할 수 없으니 음성사서함에 남겨주세요")

        assert conversation_config.voicemail_message in document
        assert completer.calls == 0

        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.FAILED
        messages = transcript_of(record)
        assert messages[-2]["speaker"] == "User"
        assert "음성사서함" in messages[-2]["message"]
        assert messages[-1]["message"] == "call_ended:voicemail_detected"

    @pytest.mark.asyncio
    async def test_voicemail_phrase_ignored_after_first_turn(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        completer: FakeCompleter,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        await start_call(orchestrator, database, member_id)
        await say(orchestrator, 1)

        document = await orchestrator.on_utterance(CALL_ID, "어제 딸이 음성사서함에 메시지를 남겼어요")

        assert "<Gather" in document
        assert completer.calls == 2
        assert store.get(CALL_ID).user_turn_count == 2


class TestMaxTurns:
    @pytest.mark.asyncio
    async def test_last_turn_closes_without_completion(
        self,
        orchestrator: CallOrchestrator,
        completer: FakeCompleter,
        mock_provider: MockTelephonyAdapter,
        database: DatabaseManager,
        conversation_config,
        member_id: str,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)
        await say(orchestrator, conversation_config.max_turns - 1)
        assert completer.calls == conversation_config.max_turns - 1

        mock_provider.render_termination = MagicMock(wraps=mock_provider.render_termination)
        document = await orchestrator.on_utterance(CALL_ID, "마지막으로 하고 싶은 말은 고맙다는 거예요")

        assert conversation_config.final_message in document
        assert completer.calls == conversation_config.max_turns - 1
        mock_provider.render_termination.assert_called_once_with(conversation_config.final_message)

        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.COMPLETED
        messages = transcript_of(record)
        assert sum(1 for m in messages if m["speaker"] == "User") == conversation_config.max_turns
        assert messages[-2]["message"] == "마지막으로 하고 싶은 말은 고맙다는 거예요"
        assert messages[-1]["message"] == "call_ended:max_turns"


class TestFinalize:
    @pytest.mark.asyncio
    async def test_finalize_twice_is_idempotent(
        self,
        orchestrator: CallOrchestrator,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)
        await say(orchestrator, 2)

        first = await orchestrator.finalize(CALL_ID, CallRecordStatus.COMPLETED, "manual_close")
        after_first = await load_record(database, record_id)
        second = await orchestrator.finalize(CALL_ID, CallRecordStatus.FAILED, "again")
        after_second = await load_record(database, record_id)

        assert first == FinalizeOutcome.WRITTEN
        assert second == FinalizeOutcome.NO_SESSION
        assert after_second.status == after_first.status == CallRecordStatus.COMPLETED
        assert after_second.transcript == after_first.transcript

    @pytest.mark.asyncio
    async def test_existing_transcript_is_not_overwritten(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        record_id = await create_record(
            database, member_id, CALL_ID, transcript='[{"speaker": "AI", "message": "done"}]'
        )
        await orchestrator.on_call_started(CALL_ID)

        outcome = await orchestrator.finalize(CALL_ID, CallRecordStatus.FAILED, "late")

        assert outcome == FinalizeOutcome.ALREADY_FINALIZED
        assert CALL_ID not in store
        record = await load_record(database, record_id)
        assert record.transcript == '[{"speaker": "AI", "message": "done"}]'
        assert record.status == CallRecordStatus.QUEUED

    @pytest.mark.asyncio
    async def test_missing_record_is_a_logged_no_op(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        analyzer: RecordingAnalyzer,
    ) -> None:
        await orchestrator.on_call_started("CA_NO_RECORD")

        outcome = await orchestrator.finalize("CA_NO_RECORD", CallRecordStatus.COMPLETED, "x")

        assert outcome == FinalizeOutcome.NO_RECORD
        assert "CA_NO_RECORD" not in store
        await orchestrator.wait_for_background()
        assert analyzer.calls == []

    @pytest.mark.asyncio
    async def test_storage_error_releases_call_lock(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        database: DatabaseManager,
        member_id: str,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await start_call(orchestrator, database, member_id)
        failing_session = MagicMock(side_effect=RuntimeError("database unavailable"))
        monkeypatch.setattr(database, "session", failing_session)

        with pytest.raises(RuntimeError, match="database unavailable"):
            await orchestrator.finalize(CALL_ID, CallRecordStatus.COMPLETED, "x")

        assert CALL_ID not in store
        assert store.lock_users(CALL_ID) == 0

    @pytest.mark.asyncio
    async def test_serialization_failure_stores_error_payload(
        self,
        store: SessionStore,
        completer: FakeCompleter,
        mock_provider: MockTelephonyAdapter,
        database: DatabaseManager,
        conversation_config,
        member_id: str,
    ) -> None:
        def broken_serializer(session: CallSession) -> str:
            raise TypeError("not serializable")

        orchestrator = CallOrchestrator(
            store=store,
            completer=completer,
            provider=mock_provider,
            database=database,
            respond_url=RESPOND_URL,
            config=conversation_config,
            serializer=broken_serializer,
        )
        record_id = await start_call(orchestrator, database, member_id)

        await orchestrator.on_utterance(CALL_ID, "종료")

        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.FAILED
        assert json.loads(record.transcript) == {
            "error": "Failed to process conversation data.",
            "reason": "user_request",
        }
        assert CALL_ID not in store

    @pytest.mark.asyncio
    async def test_analysis_runs_with_record_anchor(
        self,
        orchestrator: CallOrchestrator,
        analyzer: RecordingAnalyzer,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)

        await orchestrator.on_utterance(CALL_ID, "종료")
        await orchestrator.wait_for_background()

        record = await load_record(database, record_id)
        assert analyzer.calls == [(member_id, record.requested_at)]

    @pytest.mark.asyncio
    async def test_analysis_failure_keeps_committed_state(
        self,
        store: SessionStore,
        completer: FakeCompleter,
        mock_provider: MockTelephonyAdapter,
        database: DatabaseManager,
        conversation_config,
        member_id: str,
    ) -> None:
        failing = RecordingAnalyzer(error=RuntimeError("analysis down"))
        orchestrator = CallOrchestrator(
            store=store,
            completer=completer,
            provider=mock_provider,
            database=database,
            respond_url=RESPOND_URL,
            config=conversation_config,
            analyzer=failing,
        )
        record_id = await start_call(orchestrator, database, member_id)

        await orchestrator.on_utterance(CALL_ID, "종료")
        await orchestrator.wait_for_background()

        assert len(failing.calls) == 1
        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.COMPLETED
        assert record.transcript is not None


class TestStatusCallbacks:
    @pytest.mark.asyncio
    async def test_completed_after_conversation_finalize_changes_nothing(
        self,
        orchestrator: CallOrchestrator,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)
        await say(orchestrator, 2)
        await orchestrator.on_utterance(CALL_ID, "종료")
        before = await load_record(database, record_id)

        outcome = await orchestrator.on_status(CALL_ID, CallStatus.COMPLETED, "completed")

        after = await load_record(database, record_id)
        assert outcome == FinalizeOutcome.NO_SESSION
        assert after.status == before.status == CallRecordStatus.COMPLETED
        assert after.transcript == before.transcript

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "raw", "expected"),
        [
            (CallStatus.COMPLETED, "completed", CallRecordStatus.COMPLETED),
            (CallStatus.FAILED, "failed", CallRecordStatus.FAILED),
            (CallStatus.BUSY, "busy", CallRecordStatus.FAILED),
            (CallStatus.NO_ANSWER, "no-answer", CallRecordStatus.FAILED),
            (CallStatus.CANCELED, "canceled", CallRecordStatus.FAILED),
        ],
    )
    async def test_terminal_status_finalizes_live_call(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        database: DatabaseManager,
        member_id: str,
        status: CallStatus,
        raw: str,
        expected: CallRecordStatus,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)
        await say(orchestrator, 1)

        outcome = await orchestrator.on_status(CALL_ID, status, raw)

        assert outcome == FinalizeOutcome.WRITTEN
        assert CALL_ID not in store
        record = await load_record(database, record_id)
        assert record.status == expected
        assert transcript_of(record)[-1]["message"] == f"call_ended:unexpected_termination:{raw}"

    @pytest.mark.asyncio
    async def test_progress_status_is_only_acknowledged(
        self,
        orchestrator: CallOrchestrator,
        store: SessionStore,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        record_id = await start_call(orchestrator, database, member_id)

        outcome = await orchestrator.on_status(CALL_ID, CallStatus.IN_PROGRESS, "in-progress")

        assert outcome is None
        assert CALL_ID in store
        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.QUEUED

    @pytest.mark.asyncio
    async def test_unanswered_call_is_marked_failed(
        self,
        orchestrator: CallOrchestrator,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        record_id = await create_record(database, member_id, CALL_ID)

        outcome = await orchestrator.on_status(CALL_ID, CallStatus.NO_ANSWER, "no-answer")

        assert outcome == FinalizeOutcome.NO_SESSION
        record = await load_record(database, record_id)
        assert record.status == CallRecordStatus.FAILED
        assert record.transcript is None

    @pytest.mark.asyncio
    async def test_status_waits_for_in_flight_turn(
        self,
        orchestrator: CallOrchestrator,
        completer: FakeCompleter,
        database: DatabaseManager,
        member_id: str,
    ) -> None:
        release = asyncio.Event()
        original = completer.complete

        async def blocked_complete(session: CallSession) -> str:
            await release.wait()
            return await original(session)

        completer.complete = blocked_complete  # type: ignore[method-assign]
        record_id = await start_call(orchestrator, database, member_id)

        turn = asyncio.create_task(orchestrator.on_utterance(CALL_ID, "잠깐만요"))
        await asyncio.sleep(0)
        status = asyncio.create_task(
            orchestrator.on_status(CALL_ID, CallStatus.COMPLETED, "completed")
        )
        await asyncio.sleep(0)
        release.set()
        await turn
        outcome = await status

        assert outcome == FinalizeOutcome.WRITTEN
        record = await load_record(database, record_id)
        messages = [m["message"] for m in transcript_of(record)]
        assert "잠깐만요" in messages
        assert "reply 1" in messages
        assert messages[-1] == "call_ended:unexpected_termination:completed"
