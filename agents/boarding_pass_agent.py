from __future__ import annotations

from typing import Any, Dict, Optional

from agents.base import BaseStageAgent, last_tool_result
from models.schemas import AgentRunResult, CheckInStage, SessionState, StageStatus

BOARDING_PASS_TOOL = "ssci_boarding_pass"
WALLET_PROMPT = "Your boarding pass is generated. Would you like to add it to your wallet?"


class BoardingPassAgent(BaseStageAgent):
    stage = CheckInStage.BOARDING_PASS
    allowed_tools = (BOARDING_PASS_TOOL,)

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        computed = last_tool_result(result.steps, BOARDING_PASS_TOOL)
        if record is None and computed is None:
            return None
        record = {**(computed or {}), **(record or {})}
        if record.get("error"):
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
        elif record.get("isBoardingPassEligible") is True:
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            record["userMessage"] = WALLET_PROMPT
        elif record.get("status") is None:
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
            record.setdefault("userMessage", "Boarding pass is not available for this journey.")
        return record
