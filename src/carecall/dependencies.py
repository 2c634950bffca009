"""
FastAPI dependencies resolving the components built in the app lifespan.
"""

from fastapi import Request

from carecall.calls.dispatcher import CallDispatcher
from carecall.dialogue.orchestrator import CallOrchestrator
from carecall.telephony.config import TelephonyConfig
from carecall.telephony.interface import TelephonyProvider


def get_orchestrator(request: Request) -> CallOrchestrator:
    return request.app.state.orchestrator


def get_dispatcher(request: Request) -> CallDispatcher:
    return request.app.state.dispatcher


def get_telephony_provider(request: Request) -> TelephonyProvider:
    return request.app.state.telephony_provider


def get_telephony_config(request: Request) -> TelephonyConfig:
    return request.app.state.telephony_config
