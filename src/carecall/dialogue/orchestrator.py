"""
Conversation state machine for a wellness-check call.

Each webhook from the telephony provider maps onto one method here:

- ``on_call_started``: the callee picked up; greet and listen.
- ``on_utterance``: a speech result (or silence) arrived; decide whether to
  continue the conversation or end it.
- ``on_status``: the provider reported a call status; a terminal one ends
  the conversation if it is still live.

All three serialize on the per-call lock from the session store. Every way
a call can end goes through ``finalize``, which claims the live session by
removing it and writes the transcript at most once.
"""

import asyncio
import json
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol

from carecall.analysis.analyzer import PostCallAnalyzer
from carecall.calls.models import CallRecordStatus
from carecall.calls.repository import CallRecordRepository
from carecall.dialogue.config import ConversationConfig
from carecall.dialogue.llm.errors import LLMError
from carecall.dialogue.models import CallSession, Speaker, serialize_transcript
from carecall.dialogue.session_store import SessionStore
from carecall.shared.database import DatabaseManager
from carecall.shared.logging import get_logger
from carecall.telephony.interface import CallStatus, TelephonyProvider

logger = get_logger(__name__)

SERIALIZATION_ERROR_MESSAGE = "Failed to process conversation data."


class TerminationReason(str, Enum):
    TIMEOUT = "timeout"
    USER_REQUEST = "user_request"
    VOICEMAIL_DETECTED = "voicemail_detected"
    MAX_TURNS = "max_turns"
    SESSION_CONFLICT = "session_conflict"


class FinalizeOutcome(str, Enum):
    """What a finalize call did."""

    WRITTEN = "written"
    NO_SESSION = "no_session"
    NO_RECORD = "no_record"
    ALREADY_FINALIZED = "already_finalized"


class Completer(Protocol):
    async def complete(self, session: CallSession) -> str: ...


class CallOrchestrator:
    """Drives one conversation per provider call id."""

    def __init__(
        self,
        store: SessionStore,
        completer: Completer,
        provider: TelephonyProvider,
        database: DatabaseManager,
        respond_url: str,
        config: ConversationConfig | None = None,
        analyzer: PostCallAnalyzer | None = None,
        serializer: Callable[[CallSession], str] = serialize_transcript,
    ) -> None:
        self._store = store
        self._completer = completer
        self._provider = provider
        self._db = database
        self._respond_url = respond_url
        self._config = config or ConversationConfig()
        self._analyzer = analyzer
        self._serializer = serializer
        self._background: set[asyncio.Task[None]] = set()

    @property
    def config(self) -> ConversationConfig:
        return self._config

    async def on_call_started(self, call_id: str) -> str:
        """Create the session with the greeting and ask for the first answer.

        A repeated start for a live call re-asks the last prompt.
        """
        greeting = self._config.greeting_message
        async with self._store.locked(call_id):
            session = self._store.get(call_id)
            if session is None:
                session = self._store.put_if_absent(
                    CallSession(call_id).with_turn(Speaker.ASSISTANT, greeting)
                )
                logger.info("Conversation started", extra={"call_id": call_id})
            else:
                logger.info("Duplicate call start ignored", extra={"call_id": call_id})
            prompt = session.last_assistant_text or greeting
        return self._provider.render_continuation(prompt, self._respond_url)

    async def on_utterance(self, call_id: str, utterance: str | None) -> str:
        """Advance the conversation by one user utterance.

        Returns:
            A continuation document, or a termination document when the call
            has ended.
        """
        async with self._store.locked(call_id):
            document = await self._handle_utterance(call_id, (utterance or "").strip())
        return document

    async def on_status(
        self,
        call_id: str,
        status: CallStatus,
        raw_status: str | None = None,
    ) -> FinalizeOutcome | None:
        """Finalize on a terminal provider status; ignore progress statuses."""
        if not status.is_terminal:
            logger.debug(
                "Non-terminal call status",
                extra={"call_id": call_id, "call_status": status.value},
            )
            return None

        final_status = (
            CallRecordStatus.COMPLETED if status == CallStatus.COMPLETED else CallRecordStatus.FAILED
        )
        reason = f"unexpected_termination:{raw_status or status.value}"

        async with self._store.locked(call_id):
            outcome = await self._finalize(call_id, final_status, reason)

        if outcome == FinalizeOutcome.NO_SESSION and final_status == CallRecordStatus.FAILED:
            # The call never reached the conversation (busy, no answer, ...).
            await self._fail_unanswered(call_id, status)
        return outcome

    async def finalize(
        self,
        call_id: str,
        status: CallRecordStatus,
        reason: str,
    ) -> FinalizeOutcome:
        async with self._store.locked(call_id):
            outcome = await self._finalize(call_id, status, reason)
        return outcome

    async def wait_for_background(self) -> None:
        """Wait for scheduled post-call analyses to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _handle_utterance(self, call_id: str, text: str) -> str:
        cfg = self._config

        if not text:
            logger.info("No speech received", extra={"call_id": call_id})
            await self._finalize(call_id, CallRecordStatus.FAILED, TerminationReason.TIMEOUT.value)
            return self._provider.render_termination(cfg.timeout_message)

        if cfg.hangup_keyword in text:
            logger.info("Caller asked to hang up", extra={"call_id": call_id})
            await self._finalize(
                call_id, CallRecordStatus.COMPLETED, TerminationReason.USER_REQUEST.value
            )
            return self._provider.render_termination(cfg.hangup_message)

        current = self._store.get(call_id)
        if current is None:
            if not await self._call_still_open(call_id):
                logger.info("Utterance after call ended ignored", extra={"call_id": call_id})
                return self._provider.render_termination(cfg.final_message)
            logger.warning("Utterance for unknown call; starting empty session", extra={"call_id": call_id})
            current = self._store.put_if_absent(CallSession(call_id))

        session = current.with_turn(Speaker.USER, text)
        user_turns = session.user_turn_count

        if user_turns == 1 and self._looks_like_voicemail(text):
            self._store.compare_and_set(call_id, current, session)
            logger.info("Voicemail detected", extra={"call_id": call_id})
            await self._finalize(
                call_id, CallRecordStatus.FAILED, TerminationReason.VOICEMAIL_DETECTED.value
            )
            return self._provider.render_termination(cfg.voicemail_message)

        if user_turns >= cfg.max_turns:
            self._store.compare_and_set(call_id, current, session)
            await self._finalize(
                call_id, CallRecordStatus.COMPLETED, TerminationReason.MAX_TURNS.value
            )
            return self._provider.render_termination(cfg.final_message)

        reply = await self._complete(session)
        updated = session.with_turn(Speaker.ASSISTANT, reply)
        if not self._store.compare_and_set(call_id, current, updated):
            logger.warning(
                "Session changed during completion; ending call",
                extra={"call_id": call_id, "user_turns": user_turns},
            )
            await self._finalize(
                call_id, CallRecordStatus.COMPLETED, TerminationReason.SESSION_CONFLICT.value
            )
            return self._provider.render_termination(cfg.final_message)

        logger.info("Turn completed", extra={"call_id": call_id, "user_turns": user_turns})
        return self._provider.render_continuation(reply, self._respond_url)

    async def _complete(self, session: CallSession) -> str:
        try:
            return await self._completer.complete(session)
        except LLMError:
            logger.exception("Completion failed; using fallback reply", extra={"call_id": session.call_id})
            return self._config.fallback_message

    async def _call_still_open(self, call_id: str) -> bool:
        """True while the call's record is queued and has no transcript."""
        async with self._db.session() as db:
            record = await CallRecordRepository(db).get_by_provider_call_id(call_id)
        return (
            record is not None
            and record.transcript is None
            and record.status == CallRecordStatus.QUEUED
        )

    def _looks_like_voicemail(self, text: str) -> bool:
        lowered = text.lower()
        return any(phrase.lower() in lowered for phrase in self._config.voicemail_phrases)

    async def _finalize(
        self,
        call_id: str,
        status: CallRecordStatus,
        reason: str,
    ) -> FinalizeOutcome:
        session = self._store.remove(call_id)
        if session is None:
            logger.info(
                "Finalize skipped: no live session",
                extra={"call_id": call_id, "reason": reason},
            )
            return FinalizeOutcome.NO_SESSION

        closed = session.with_turn(Speaker.SYSTEM, f"call_ended:{reason}")
        try:
            transcript = self._serializer(closed)
        except (TypeError, ValueError):
            logger.exception("Transcript serialization failed", extra={"call_id": call_id})
            transcript = json.dumps({"error": SERIALIZATION_ERROR_MESSAGE, "reason": reason})
            status = CallRecordStatus.FAILED

        async with self._db.session() as db:
            repo = CallRecordRepository(db)
            record = await repo.get_by_provider_call_id(call_id)
            if record is None:
                logger.warning(
                    "Finalize skipped: no call record",
                    extra={"call_id": call_id, "reason": reason},
                )
                return FinalizeOutcome.NO_RECORD
            if record.transcript is not None or not await repo.write_final(
                record.id, transcript, status
            ):
                logger.info(
                    "Finalize skipped: transcript already stored",
                    extra={"call_id": call_id, "record_id": record.id, "reason": reason},
                )
                return FinalizeOutcome.ALREADY_FINALIZED
            member_id = record.member_id
            anchor = record.requested_at
            record_id = record.id

        logger.info(
            "Call finalized",
            extra={
                "call_id": call_id,
                "record_id": record_id,
                "status": status.value,
                "reason": reason,
                "user_turns": session.user_turn_count,
            },
        )
        if member_id:
            self._schedule_analysis(member_id, anchor)
        return FinalizeOutcome.WRITTEN

    async def _fail_unanswered(self, call_id: str, status: CallStatus) -> None:
        async with self._db.session() as db:
            repo = CallRecordRepository(db)
            record = await repo.get_by_provider_call_id(call_id)
            if record is None:
                return
            if await repo.mark_failed(record.id, only_if_queued=True):
                logger.info(
                    "Unanswered call marked failed",
                    extra={"call_id": call_id, "record_id": record.id, "call_status": status.value},
                )

    def _schedule_analysis(self, member_id: str, anchor: datetime) -> None:
        if self._analyzer is None:
            return
        task = asyncio.create_task(self._run_analysis(member_id, anchor))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_analysis(self, member_id: str, anchor: datetime) -> None:
        assert self._analyzer is not None
        try:
            await self._analyzer.analyze(member_id, anchor)
        except Exception:
            logger.exception("Post-call analysis failed", extra={"member_id": member_id})
