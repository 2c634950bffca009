"""
API for placing a call on demand.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from carecall.calls.dispatcher import CallDispatcher
from carecall.calls.models import CallRecordStatus
from carecall.dependencies import get_dispatcher
from carecall.shared.logging import get_logger
from carecall.telephony.interface import TelephonyProviderError

logger = get_logger(__name__)

router = APIRouter(prefix="/api/members", tags=["calls"])


class CreateCallResponse(BaseModel):
    call_record_id: int
    provider_call_id: str
    status: CallRecordStatus


@router.post(
    "/{member_id}/calls",
    response_model=CreateCallResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_manual_call(
    member_id: str,
    dispatcher: Annotated[CallDispatcher, Depends(get_dispatcher)],
) -> CreateCallResponse:
    try:
        result = await dispatcher.dispatch_manual(member_id)
    except TelephonyProviderError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": str(e), "error_code": e.error_code},
        ) from e

    return CreateCallResponse(
        call_record_id=result.record_id,
        provider_call_id=result.provider_call_id,
        status=CallRecordStatus.QUEUED,
    )
