"""
Conversation rules and spoken phrases.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConversationConfig(BaseSettings):
    """Turn limits, trigger phrases and scripted lines for a wellness call."""

    model_config = SettingsConfigDict(
        env_prefix="CONVERSATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_turns: int = Field(
        default=10,
        ge=1,
        le=50,
        description="User turns after which the call is closed.",
    )
    hangup_keyword: str = Field(default="종료", min_length=1)
    voicemail_phrases: list[str] = Field(
        default_factory=lambda: [
            "음성사서함",
            "음성 사서함",
            "삐 소리",
            "메시지를 남겨",
            "leave a message",
            "voicemail",
        ],
        description="Substrings that mark a first utterance as an answering machine.",
    )

    greeting_message: str = "안녕하세요, AI 상담가입니다. 오늘 어떤 이야기를 나누고 싶으신가요?"
    final_message: str = (
        "오늘 함께 이야기 나눌 수 있어서 의미 있는 시간이었습니다. "
        "편안한 하루 보내시고, 다음에 또 뵙겠습니다."
    )
    timeout_message: str = "응답이 없어 통화를 종료합니다."
    hangup_message: str = "요청에 따라 통화를 종료합니다."
    voicemail_message: str = "나중에 다시 연락드리겠습니다."
    fallback_message: str = (
        "죄송합니다. 시스템에 오류가 발생하여 답변을 드릴 수 없습니다. 잠시 후 다시 시도해주세요."
    )


def get_conversation_config() -> ConversationConfig:
    return ConversationConfig()
