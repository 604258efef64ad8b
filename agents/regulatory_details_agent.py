from __future__ import annotations

from typing import Any, Dict, List, Optional

from agents.base import BaseStageAgent, last_tool_result
from agents.utterance_parser import is_user_confirming, normalize_nationality_goal
from models.schemas import AgentRunResult, CheckInStage, SessionState, StageStatus

DETAILS_TOOL = "ssci_regulatory_details"
UPDATE_TOOL = "ssci_regulatory_details_update"

ACKNOWLEDGEMENT = "Thank you confirming we are proceeding with your check in process."
NATIONALITY_PROMPT = "Please provide nationality country code (e.g., AE)."
CONSENT_SUFFIX = (
    "Thank you for confirming. To continue with check-in, please confirm your consent "
    "for the dangerous goods declaration."
)
FRIENDLY_FIELD_NAMES = {"nationalityCountryCode": "nationality"}


def build_missing_fields_message(required: List[str], goal: str, existing: Optional[str] = None) -> str:
    prefix = (existing or "").strip() or (ACKNOWLEDGEMENT if is_user_confirming(goal) else "")
    if "nationalityCountryCode" in required:
        prompt = NATIONALITY_PROMPT
    else:
        prompt = f"Please provide {', '.join(FRIENDLY_FIELD_NAMES.get(f, f) for f in required)}."
    return f"{prefix} {prompt} {CONSENT_SUFFIX}".strip() if prefix else f"{prompt} {CONSENT_SUFFIX}"


class RegulatoryDetailsAgent(BaseStageAgent):
    stage = CheckInStage.REGULATORY_DETAILS
    allowed_tools = (DETAILS_TOOL, UPDATE_TOOL)

    def preprocess_goal(self, goal: str, state: SessionState | None) -> str:
        return normalize_nationality_goal(goal)

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        # an update result supersedes the earlier lookup
        computed = last_tool_result(result.steps, UPDATE_TOOL) or last_tool_result(result.steps, DETAILS_TOOL)
        if record is None and computed is None:
            return None
        record = {**(computed or {}), **(record or {})}
        raw = record.get("requiredFieldsMissing")
        required = [f for f in raw if isinstance(f, str)] if isinstance(raw, list) else []
        if required:
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            existing = record.get("userMessage") if isinstance(record.get("userMessage"), str) else None
            record["userMessage"] = build_missing_fields_message(required, goal, existing)
            record["missingFields"] = required
        elif record.get("error"):
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
        elif record.get("status") is None:
            record["status"] = StageStatus.SUCCESS.value
            record["continue"] = True
            record.setdefault("userMessage", "Regulatory details updated successfully.")
        return record
