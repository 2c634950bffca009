"""
FastAPI router for telephony webhook endpoints.

Twilio posts form-encoded payloads:

- ``/voice/start`` when the callee answers (``Url`` of the outbound call),
- ``/voice/respond`` with ``SpeechResult`` after each <Gather>, or without it
  when the caller stayed silent,
- ``/status`` for call progress (``StatusCallback``).

Voice routes always answer with TwiML, even when handling fails, so the
caller hears a closing line instead of Twilio's generic error.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from carecall.dependencies import get_orchestrator, get_telephony_config, get_telephony_provider
from carecall.dialogue.orchestrator import CallOrchestrator
from carecall.shared.logging import correlation_id_var, get_logger
from carecall.telephony.config import (
    STATUS_CALLBACK_PATH,
    VOICE_RESPOND_PATH,
    VOICE_START_PATH,
    WEBHOOK_PREFIX,
    TelephonyConfig,
)
from carecall.telephony.interface import TelephonyProvider, WebhookParseError

logger = get_logger(__name__)

router = APIRouter(prefix=WEBHOOK_PREFIX, tags=["webhooks"])

Orchestrator = Annotated[CallOrchestrator, Depends(get_orchestrator)]
Provider = Annotated[TelephonyProvider, Depends(get_telephony_provider)]
Config = Annotated[TelephonyConfig, Depends(get_telephony_config)]


def _xml(document: str) -> Response:
    return Response(content=document, media_type="application/xml")


async def _read_form(
    request: Request,
    provider: TelephonyProvider,
    cfg: TelephonyConfig,
    path: str,
) -> dict[str, str]:
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    if cfg.validate_signatures:
        signature = request.headers.get("X-Twilio-Signature", "")
        if not provider.validate_webhook_signature(params, signature, cfg.get_webhook_url(path)):
            logger.warning("Rejected webhook with invalid signature", extra={"path": path})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")
    return params


def _require_call_sid(params: dict[str, str]) -> str:
    call_sid = params.get("CallSid", "").strip()
    if not call_sid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing CallSid")
    return call_sid


@router.post("/voice/start")
async def voice_start(
    request: Request,
    orchestrator: Orchestrator,
    provider: Provider,
    cfg: Config,
) -> Response:
    params = await _read_form(request, provider, cfg, VOICE_START_PATH)
    call_sid = _require_call_sid(params)
    token = correlation_id_var.set(call_sid)
    try:
        try:
            document = await orchestrator.on_call_started(call_sid)
        except Exception:
            logger.exception("Call start handling failed")
            document = provider.render_termination(orchestrator.config.fallback_message)
        return _xml(document)
    finally:
        correlation_id_var.reset(token)


@router.post("/voice/respond")
async def voice_respond(
    request: Request,
    orchestrator: Orchestrator,
    provider: Provider,
    cfg: Config,
) -> Response:
    params = await _read_form(request, provider, cfg, VOICE_RESPOND_PATH)
    call_sid = _require_call_sid(params)
    token = correlation_id_var.set(call_sid)
    try:
        speech = params.get("SpeechResult")
        logger.info(
            "Speech result received",
            extra={"has_speech": bool(speech), "confidence": params.get("Confidence")},
        )
        try:
            document = await orchestrator.on_utterance(call_sid, speech)
        except Exception:
            logger.exception("Utterance handling failed")
            document = provider.render_termination(orchestrator.config.fallback_message)
        return _xml(document)
    finally:
        correlation_id_var.reset(token)


@router.post("/status")
async def status_callback(
    request: Request,
    orchestrator: Orchestrator,
    provider: Provider,
    cfg: Config,
) -> dict[str, object]:
    params = await _read_form(request, provider, cfg, STATUS_CALLBACK_PATH)
    try:
        callback = provider.parse_status_callback(params)
    except WebhookParseError as e:
        logger.warning(
            "Unparseable status callback",
            extra={"error_code": e.error_code, "payload_keys": sorted(params)},
        )
        return {"ok": False, "error_code": e.error_code}

    token = correlation_id_var.set(callback.provider_call_id)
    try:
        logger.info(
            "Call status received",
            extra={"call_status": callback.raw_status, "duration_seconds": callback.duration_seconds},
        )
        try:
            outcome = await orchestrator.on_status(
                callback.provider_call_id,
                callback.status,
                callback.raw_status,
            )
        except Exception:
            logger.exception("Status handling failed")
            return {"ok": False}
        return {"ok": True, "finalize": outcome.value if outcome else None}
    finally:
        correlation_id_var.reset(token)
