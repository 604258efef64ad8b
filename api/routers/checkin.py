from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request

from agents.orchestrator import CheckInOrchestrator
from models.schemas import CheckInStage, RunRequest, StageError, StageResponse, StageStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/main", tags=["checkin"])


def _orchestrator(request: Request) -> CheckInOrchestrator:
    return request.app.state.orchestrator


@router.post("/run")
async def run_checkin(payload: RunRequest, request: Request):
    orchestrator = _orchestrator(request)
    try:
        response = await orchestrator.run(payload.goal, payload.session_id)
    except Exception:
        logger.exception("checkin_run_failed", extra={"session_id": payload.session_id})
        state = await orchestrator.get_session(payload.session_id) if payload.session_id else None
        response = StageResponse(
            session_id=payload.session_id or "",
            stage=state.current_stage if state else CheckInStage.BEGIN_CONVERSATION,
            status=StageStatus.FAILED,
            continue_=False,
            error=StageError(code="internal_error", message="Unexpected error while processing the request."),
            user_message="Something went wrong. Please try again.",
        )
    return response.to_json()


@router.get("/session/{session_id}")
async def get_session(session_id: str, request: Request):
    state = await _orchestrator(request).get_session(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail="session_not_found")
    return state.to_json()


@router.delete("/session/{session_id}")
async def delete_session(session_id: str, request: Request):
    await _orchestrator(request).delete_session(session_id)
    return {"ok": True, "sessionId": session_id}


@router.get("/tools")
async def list_tools(request: Request):
    tools = await _orchestrator(request).list_tools()
    return {"tools": tools}
