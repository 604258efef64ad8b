from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

from agents.base import BaseStageAgent, last_tool_result
from agents.state_helper import build_context
from models.schemas import AgentRunResult, AgentStep, CheckInStage, SessionState, StageStatus

TRIP_TOOL = "trip_identification"


def extract_bookings(steps: Sequence[AgentStep]) -> List[Dict[str, Any]]:
    payload = last_tool_result(steps, TRIP_TOOL) or {}
    bookings = payload.get("data")
    return [item for item in bookings if isinstance(item, dict)] if isinstance(bookings, list) else []


def extract_pnrs(steps: Sequence[AgentStep]) -> List[str]:
    pnrs: List[str] = []
    for booking in extract_bookings(steps):
        pnr = booking.get("id").strip() if isinstance(booking.get("id"), str) else ""
        if pnr and pnr not in pnrs:
            pnrs.append(pnr)
    return pnrs


class TripIdentificationAgent(BaseStageAgent):
    """Looks up the bookings behind a frequent flyer number and lets the user pick one."""

    stage = CheckInStage.TRIP_IDENTIFICATION
    allowed_tools = (TRIP_TOOL,)
    tool_choice = "required"

    def system_prompt(self, state: SessionState | None) -> str:
        base = self.prompts.system_prompt
        context = build_context(state) if state is not None else ""
        if not context.strip():
            return base
        return f"{base}\n\nContext (from session state, trusted):\n{context}"

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        pnrs = extract_pnrs(result.steps)
        if not pnrs:
            return record
        record = dict(record or {})
        mock_pnr = self.settings.mock_pnr
        recommended = mock_pnr if mock_pnr in pnrs else pnrs[0]
        record["choices"] = pnrs
        record["recommendedPnr"] = recommended
        if len(pnrs) == 1:
            record["selectedPnr"] = pnrs[0]
            record["status"] = StageStatus.SUCCESS.value
            record["continue"] = True
        else:
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            listing = ", ".join(pnrs)
            if mock_pnr in pnrs:
                record["userMessage"] = (
                    f"Two PNRs available: {listing}. {mock_pnr} is available for check-in. "
                    "Which PNR would you like to retrieve?"
                )
            else:
                record["userMessage"] = f"Two PNRs available: {listing}. Which PNR would you like to retrieve?"
        record["pendingBookings"] = [
            {"id": booking.get("id"), "flights": booking.get("flights") or []} for booking in extract_bookings(result.steps)
        ]
        return record
