from __future__ import annotations

from typing import Any, Dict, Optional

from agents.base import BaseStageAgent
from agents.state_helper import compute_required_fields
from agents.utterance_parser import extract_identity_fields
from models.schemas import AgentRunResult, CheckInStage, SessionState, StageStatus

REQUIRED_FIELDS = ["lastName", "frequentFlyerOrBookingReference"]
REQUIRED_CHECKS = {
    "lastName": lambda fields: not fields.get("lastName"),
    "frequentFlyerOrBookingReference": lambda fields: not fields.get("frequentFlyerNumber")
    and not fields.get("bookingReference"),
}
REQUIRED_LABELS = {"frequentFlyerOrBookingReference": "frequentFlyerNumber or bookingReference"}

IDENTITY_KEYS = ("frequentFlyerNumber", "bookingReference", "lastName", "firstName")
# keys the model sometimes uses instead of ours
KEY_ALIASES = {"frequentFlyerCardNumber": "frequentFlyerNumber", "pnr": "bookingReference"}


def _clean(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


class BeginConversationAgent(BaseStageAgent):
    stage = CheckInStage.BEGIN_CONVERSATION
    allowed_tools = ()
    enforce_tool_use = False

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        fields: Dict[str, Optional[str]] = {}
        if state is not None:
            stored = state.begin_conversation
            fields = {
                "frequentFlyerNumber": stored.frequent_flyer_number,
                "bookingReference": stored.booking_reference,
                "lastName": stored.last_name,
                "firstName": stored.first_name,
            }
        for key, value in extract_identity_fields(goal).items():
            fields[key] = _clean(value) or fields.get(key)
        for key, value in (record or {}).items():
            key = KEY_ALIASES.get(key, key)
            if key in IDENTITY_KEYS and _clean(value):
                fields[key] = _clean(value)

        missing = compute_required_fields(REQUIRED_FIELDS, REQUIRED_CHECKS, fields, REQUIRED_LABELS)
        ready = not missing
        payload: Dict[str, Any] = {key: value for key, value in fields.items() if value}
        payload["status"] = StageStatus.SUCCESS.value if ready else StageStatus.USER_INPUT_REQUIRED.value
        payload["continue"] = ready
        payload["missing"] = missing or []
        if not ready and record and isinstance(record.get("userMessage"), str):
            payload["userMessage"] = record["userMessage"]
        return payload
