"""
Session lifecycle endpoints: consent, notes, tab switches, submit & lock.
"""

from fastapi import APIRouter, Depends

from worksy.api.deps import get_session_service
from worksy.schemas.schemas import (
    NotesRequest,
    OkResponse,
    SessionRequest,
    SubmitResponse,
    TabSwitchResponse,
)
from worksy.services.session_service import SessionService

router = APIRouter(prefix="/api", tags=["sessions"])


@router.post("/session/consent", response_model=OkResponse)
async def record_consent(body: SessionRequest, service: SessionService = Depends(get_session_service)):
    await service.record_consent(body.session_id)
    return OkResponse()


@router.post("/session/notes", response_model=OkResponse)
async def update_notes(body: NotesRequest, service: SessionService = Depends(get_session_service)):
    await service.update_notes(body.session_id, body.notes)
    return OkResponse()


@router.post("/tab-switch", response_model=TabSwitchResponse)
async def record_tab_switch(body: SessionRequest, service: SessionService = Depends(get_session_service)):
    count = await service.record_tab_switch(body.session_id)
    return TabSwitchResponse(tab_switches=count)


@router.post("/submit", response_model=SubmitResponse, response_model_exclude_none=True)
async def submit(body: SessionRequest, service: SessionService = Depends(get_session_service)):
    """Lock the session. Requires a sealed AI Index; repeat calls are a no-op."""
    result = await service.submit(body.session_id)
    if result.already_submitted:
        return SubmitResponse(already_submitted=True)
    return SubmitResponse()
