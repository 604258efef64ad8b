from __future__ import annotations

from typing import Any, Dict, Optional

from agents.base import BaseStageAgent, last_tool_result
from models.schemas import AgentRunResult, CheckInStage, SessionState, StageStatus

ACCEPTANCE_TOOL = "ssci_checkin_acceptance"
ACCEPTED_MESSAGE = "Check-in is successfully completed. Do you want to generate the boarding pass?"


class CheckinAcceptanceAgent(BaseStageAgent):
    stage = CheckInStage.CHECKIN_ACCEPTANCE
    allowed_tools = (ACCEPTANCE_TOOL,)

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        computed = last_tool_result(result.steps, ACCEPTANCE_TOOL)
        if record is None and computed is None:
            return None
        # model output wins over the raw tool payload
        record = {**(computed or {}), **(record or {})}
        if record.get("isAccepted") is True and not record.get("error"):
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            record["userMessage"] = ACCEPTED_MESSAGE
        elif record.get("error"):
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
        elif record.get("isPartial") is True:
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            record["userMessage"] = record.get("checkinStatusMessage") or "Check-in partially completed."
        elif record.get("status") is None:
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
            record.setdefault("userMessage", "Check-in could not be completed.")
        return record
