"""
TwiML document builders.
"""

from xml.sax.saxutils import escape, quoteattr

from carecall.telephony.config import TelephonyConfig

_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'


def _document(*verbs: str) -> str:
    return "\n".join([_HEADER, "<Response>", *verbs, "</Response>"])


def _say(message: str, voice: str, language: str) -> str:
    return f"<Say voice={quoteattr(voice)} language={quoteattr(language)}>{escape(message)}</Say>"


def gather_speech(
    message: str,
    action_url: str,
    *,
    voice: str,
    language: str,
    speech_timeout: str,
    timeout_seconds: int,
) -> str:
    """Say ``message`` inside a speech <Gather> that posts to ``action_url``.

    When the caller says nothing, Twilio falls through to the <Redirect>,
    which posts to the same URL without ``SpeechResult``.
    """
    gather = (
        f'<Gather input="speech" method="POST" action={quoteattr(action_url)} '
        f"language={quoteattr(language)} speechTimeout={quoteattr(speech_timeout)} "
        f'timeout="{timeout_seconds}">{_say(message, voice, language)}</Gather>'
    )
    return _document(gather, f'<Redirect method="POST">{escape(action_url)}</Redirect>')


def say_and_hangup(message: str, *, voice: str, language: str) -> str:
    return _document(_say(message, voice, language), "<Hangup/>")


class TwimlRendering:
    """Mixin giving a provider TwiML ``render_*`` methods from its config."""

    _config: TelephonyConfig

    def render_continuation(self, message: str, next_action_url: str) -> str:
        return gather_speech(
            message,
            next_action_url,
            voice=self._config.voice,
            language=self._config.language,
            speech_timeout=self._config.speech_timeout,
            timeout_seconds=self._config.gather_timeout_seconds,
        )

    def render_termination(self, message: str) -> str:
        return say_and_hangup(message, voice=self._config.voice, language=self._config.language)
