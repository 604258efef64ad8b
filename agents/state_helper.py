from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import ValidationError

from memory.session_store import StateStore
from models.schemas import (
    STAGE_STATE_FIELDS,
    AgentStep,
    BaseStageState,
    CheckInStage,
    SessionState,
    StageError,
    StageResponse,
    StageStatus,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

INITIAL_USER_MESSAGE = "Please provide your frequent flyer number or booking reference, plus your last name."

BASE_STATE_KEYS = {
    "status",
    "continue",
    "updatedAtUtc",
    "startedAtUtc",
    "completedAtUtc",
    "lastEventId",
    "attempt",
    "error",
    "userMessage",
}
# kept at the top level of the envelope, never copied into ``data``
ENVELOPE_KEYS = BASE_STATE_KEYS | {"missing", "steps", "sessionId", "stage"}


def extract_final_object(final: Any) -> Optional[Dict[str, Any]]:
    if not final:
        return None
    if isinstance(final, dict):
        return final
    if isinstance(final, str):
        try:
            parsed = json.loads(final)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def _stage_error(value: Any) -> Optional[StageError]:
    if isinstance(value, dict):
        try:
            return StageError.model_validate({"code": "error", **value})
        except ValidationError:
            return StageError(code="error", message=str(value))
    if isinstance(value, str) and value:
        return StageError(code="tool_error", message=value)
    return None


def normalize_base_state(payload: Any) -> Dict[str, Any]:
    now = utc_now_iso()
    if not isinstance(payload, dict):
        return {
            "status": StageStatus.FAILED,
            "continue": False,
            "updatedAtUtc": now,
            "startedAtUtc": None,
            "completedAtUtc": None,
            "lastEventId": None,
            "attempt": None,
            "error": StageError(code="invalid_response"),
            "userMessage": "Invalid agent response.",
        }
    status = payload.get("status")
    try:
        status = StageStatus(status)
    except ValueError:
        status = StageStatus.FAILED
    return {
        "status": status,
        "continue": payload.get("continue") if isinstance(payload.get("continue"), bool) else False,
        "updatedAtUtc": payload.get("updatedAtUtc") if isinstance(payload.get("updatedAtUtc"), str) else now,
        "startedAtUtc": payload.get("startedAtUtc") if isinstance(payload.get("startedAtUtc"), str) else None,
        "completedAtUtc": payload.get("completedAtUtc") if isinstance(payload.get("completedAtUtc"), str) else None,
        "lastEventId": payload.get("lastEventId") if isinstance(payload.get("lastEventId"), str) else None,
        "attempt": payload.get("attempt") if isinstance(payload.get("attempt"), int) else None,
        "error": _stage_error(payload.get("error")),
        "userMessage": payload.get("userMessage") if isinstance(payload.get("userMessage"), str) else None,
    }


def build_data_payload(payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, dict):
        return None
    extras = {key: value for key, value in payload.items() if key not in ENVELOPE_KEYS and key != "data"}
    existing = payload.get("data")
    if isinstance(existing, dict):
        return {**existing, **extras}
    return extras or None


def default_user_message(stage: CheckInStage, status: StageStatus, continue_: bool, data: Mapping[str, Any] | None) -> Optional[str]:
    is_success = status == StageStatus.SUCCESS and continue_
    is_user_input = status == StageStatus.USER_INPUT_REQUIRED and not continue_
    if stage == CheckInStage.BEGIN_CONVERSATION:
        return INITIAL_USER_MESSAGE
    if stage == CheckInStage.TRIP_IDENTIFICATION:
        if is_user_input:
            return "Please choose a PNR to retrieve."
        return "Trip identified. Proceed to journey selection." if is_success else None
    if stage == CheckInStage.JOURNEY_SELECTION:
        return "Please select a PNR/booking reference." if is_user_input else None
    if stage == CheckInStage.JOURNEY_IDENTIFICATION:
        return "Journey identified. Proceeding to validate check-in." if is_success else None
    if stage in (CheckInStage.VALIDATE_PROCESS_CHECKIN, CheckInStage.PROCESS_CHECK_IN):
        return "Do you want to check in this passenger?" if is_user_input else None
    if stage == CheckInStage.REGULATORY_DETAILS:
        return "Please provide required regulatory details." if is_user_input else None
    if stage == CheckInStage.CHECKIN_ACCEPTANCE:
        return "Check-in is successfully completed. Do you want to generate the boarding pass?" if is_user_input else None
    if stage == CheckInStage.BOARDING_PASS:
        return "Your boarding pass is generated. Would you like to add it to your wallet?" if is_user_input else None
    if stage == CheckInStage.ANCILLARY_SELECTION:
        if not is_user_input:
            return None
        if (data or {}).get("availableServices"):
            return "Ancillary services are available. Would you like to purchase priority access?"
        return "No ancillary services available for purchase."
    return "Please provide the required information to continue." if is_user_input else None


def to_stage_response(
    session_id: str,
    stage: CheckInStage,
    payload: Any,
    steps: Sequence[AgentStep] | None = None,
) -> StageResponse:
    base = normalize_base_state(payload)
    data = build_data_payload(payload)
    user_message = base.pop("userMessage") or default_user_message(stage, base["status"], base["continue"], data)
    extras: Dict[str, Any] = {}
    if isinstance(payload, dict) and isinstance(payload.get("missing"), list):
        extras["missing"] = payload["missing"]
    return StageResponse(
        session_id=session_id,
        stage=stage,
        status=base["status"],
        continue_=base["continue"],
        updated_at_utc=base["updatedAtUtc"],
        started_at_utc=base["startedAtUtc"],
        completed_at_utc=base["completedAtUtc"],
        last_event_id=base["lastEventId"],
        attempt=base["attempt"],
        error=base["error"],
        user_message=user_message,
        data=data,
        steps=[step.to_json() for step in steps] if steps else None,
        **extras,
    )


def compute_required_fields(
    required: Sequence[str],
    checks: Mapping[str, Callable[[Any], bool]],
    state: Any,
    labels: Mapping[str, str] | None = None,
) -> Optional[List[str]]:
    """Return the labels of required fields whose check reports them missing, or None."""
    labels = labels or {}
    missing = [labels.get(field, field) for field in required if field in checks and checks[field](state)]
    return missing or None


def build_context(state: SessionState) -> str:
    begin = state.begin_conversation
    parts: List[str] = []
    if begin.frequent_flyer_number:
        parts.append(f"frequentFlyerNumber: {begin.frequent_flyer_number}")
    if begin.booking_reference:
        parts.append(f"bookingReference: {begin.booking_reference}")
    if begin.last_name:
        parts.append(f"lastName: {begin.last_name}")
    if begin.first_name:
        parts.append(f"firstName: {begin.first_name}")
    return "\n".join(parts)


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class StateHelper:
    """Session bookkeeping shared by the orchestrator and the stage agents."""

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def build_initial_state(self, session_id: str) -> SessionState:
        state = SessionState(session_id=session_id)
        now = utc_now_iso()
        for field in set(STAGE_STATE_FIELDS.values()):
            getattr(state, field).started_at_utc = now
        return state

    def build_initial_response(self, session_id: str) -> StageResponse:
        return StageResponse(
            session_id=session_id,
            stage=CheckInStage.BEGIN_CONVERSATION,
            status=StageStatus.USER_INPUT_REQUIRED,
            continue_=False,
            user_message=INITIAL_USER_MESSAGE,
        )

    def build_unknown_stage_response(self, session_id: str, stage: CheckInStage) -> StageResponse:
        return StageResponse(
            session_id=session_id,
            stage=stage,
            status=StageStatus.FAILED,
            continue_=False,
            user_message=f"No orchestrator configured for stage {stage.value}.",
        )

    async def resolve_session(self, session_id: str | None) -> Tuple[str, SessionState, Optional[StageResponse]]:
        trimmed = session_id.strip() if isinstance(session_id, str) else ""
        current = trimmed if trimmed and trimmed != "null" and _is_uuid(trimmed) else str(uuid.uuid4())
        state = await self.store.get(current)
        if state is None:
            state = self.build_initial_state(current)
        if not trimmed or trimmed == "null":
            await self.save(state)
            logger.info("session_created", extra={"session_id": current})
            return current, state, self.build_initial_response(current)
        return current, state, None

    async def save(self, state: SessionState) -> SessionState:
        if state.data.use_mock is False:
            previous = await self.store.get(state.session_id)
            if previous is not None and previous.data.use_mock:
                state.data.use_mock = True
        state.version += 1
        await self.store.set(state.session_id, state)
        return state

    def apply_stage_response(self, state: SessionState, response: StageResponse) -> BaseStageState:
        """Merge a stage response into that stage's sub-record of ``state``."""
        field = STAGE_STATE_FIELDS.get(response.stage)
        if field is None:
            raise KeyError(response.stage)
        current: BaseStageState = getattr(state, field)
        merged = current.model_dump(by_alias=True)
        allowed = {info.alias or name for name, info in type(current).model_fields.items()}
        for key, value in {**(response.data or {}), **response.extras}.items():
            if key in allowed and key not in BASE_STATE_KEYS:
                merged[key] = value
        merged.update(
            {
                "status": response.status,
                "continue": response.continue_,
                "updatedAtUtc": response.updated_at_utc,
                "error": response.error.model_dump() if response.error else None,
                "userMessage": response.user_message,
                "attempt": (current.attempt or 0) + 1,
                "startedAtUtc": current.started_at_utc or response.started_at_utc or utc_now_iso(),
            }
        )
        if response.status == StageStatus.SUCCESS:
            merged["completedAtUtc"] = response.completed_at_utc or utc_now_iso()
        try:
            updated = type(current).model_validate(merged)
        except ValidationError:
            logger.warning("stage_state_merge_failed", extra={"stage": response.stage.value, "session_id": state.session_id})
            updated = type(current).model_validate(
                {key: merged[key] for key in merged if key in BASE_STATE_KEYS}
            )
        setattr(state, field, updated)
        return updated
