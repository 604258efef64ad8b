from __future__ import annotations

from typing import Any, Dict, List, Optional

from agents.base import BaseStageAgent, last_tool_result
from models.schemas import AgentRunResult, CheckInStage, SessionState, StageStatus

VALIDATE_TOOL = "ssci_validate_process_checkin"


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class ValidateProcessCheckInAgent(BaseStageAgent):
    stage = CheckInStage.VALIDATE_PROCESS_CHECKIN
    allowed_tools = (VALIDATE_TOOL,)

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        computed = last_tool_result(result.steps, VALIDATE_TOOL)
        if record is None and computed is None:
            return None
        record = {**(computed or {}), **(record or {})}
        passengers: List[Dict[str, Any]] = [
            p for p in record.get("passengersToCheckIn") or [] if isinstance(p, dict)
        ] if isinstance(record.get("passengersToCheckIn"), list) else []
        first = passengers[0] if passengers else {}

        traveler_id = _text(first.get("travelerId"))
        if traveler_id:
            record["travelerId"] = traveler_id
            journey_element_id = _text(first.get("journeyElementId"))
            if journey_element_id:
                record["journeyElementId"] = journey_element_id

        stored_last_name = _text(state.begin_conversation.last_name) if state is not None else None
        first_name = _text(first.get("firstName"))
        last_name = stored_last_name or _text(first.get("lastName"))
        personalized = None
        if first_name or last_name:
            personalized = f"Do you want to check in this passenger: {' '.join(n for n in (first_name, last_name) if n)}?"

        prompt = _text(record.get("prompt"))
        if passengers and prompt:
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            record["userMessage"] = personalized or prompt
        elif record.get("error"):
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
        elif record.get("status") is None:
            record["status"] = StageStatus.SUCCESS.value
            record["continue"] = True
        return record
