"""
Conversation session models.

A ``CallSession`` is an immutable value. Every change produces a new
instance, which lets the session store detect lost updates by identity.
"""

import json
from dataclasses import dataclass, field, replace
from enum import Enum


class Speaker(str, Enum):
    """Who produced a turn. Values match the stored transcript format."""

    SYSTEM = "System"
    USER = "User"
    ASSISTANT = "AI"


class SessionState(str, Enum):
    """Lifecycle of a live conversation."""

    STARTED = "started"
    ACTIVE = "active"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class Turn:
    speaker: Speaker
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"speaker": self.speaker.value, "message": self.text}


@dataclass(frozen=True)
class CallSession:
    """Ordered turns of one live call, keyed by the provider call id."""

    call_id: str
    turns: tuple[Turn, ...] = field(default_factory=tuple)

    @property
    def user_turn_count(self) -> int:
        return sum(1 for t in self.turns if t.speaker == Speaker.USER)

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self.user_turn_count else SessionState.STARTED

    @property
    def last_assistant_text(self) -> str | None:
        for turn in reversed(self.turns):
            if turn.speaker == Speaker.ASSISTANT:
                return turn.text
        return None

    def with_turn(self, speaker: Speaker, text: str) -> "CallSession":
        return replace(self, turns=self.turns + (Turn(speaker, text),))


def serialize_transcript(session: CallSession) -> str:
    """Render turns as a JSON list of ``{"speaker", "message"}`` objects."""
    return json.dumps([t.to_dict() for t in session.turns], ensure_ascii=False)


def parse_transcript(raw: str) -> list[Turn]:
    """Inverse of :func:`serialize_transcript`.

    Raises:
        ValueError: ``raw`` is not a list of speaker/message objects.
    """
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("transcript is not a list")
    turns: list[Turn] = []
    for item in data:
        if not isinstance(item, dict) or "speaker" not in item or "message" not in item:
            raise ValueError(f"malformed transcript entry: {item!r}")
        turns.append(Turn(Speaker(item["speaker"]), str(item["message"])))
    return turns
