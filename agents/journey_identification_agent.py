from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from agents.base import BaseStageAgent, last_tool_result
from models.schemas import AgentRunResult, AgentStep, CheckInStage, FlightSummary, SessionState, StageStatus

JOURNEY_TOOL = "ssci_identification_journey"
ELIGIBILITY_TOOL = "ssci_identification_journey_eligibility"


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def format_duration(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}m"


def compute_duration_minutes(departure: Any, arrival: Any) -> Optional[int]:
    start = _parse_datetime(departure)
    end = _parse_datetime(arrival)
    if start is None or end is None:
        return None
    return round((end - start).total_seconds() * 1000 / 60000)


def build_flight_summary(journey: Dict[str, Any]) -> Optional[FlightSummary]:
    flights = [flight for flight in journey.get("flights") or [] if isinstance(flight, dict)]
    if not flights:
        return None
    departure = flights[0].get("departure") or {}
    arrival = flights[-1].get("arrival") or {}
    minutes = compute_duration_minutes(departure.get("dateTime"), arrival.get("dateTime"))
    return FlightSummary(
        origin=departure.get("locationCode"),
        destination=arrival.get("locationCode"),
        departure=departure.get("dateTime"),
        arrival=arrival.get("dateTime"),
        duration_minutes=minutes,
        duration_text=format_duration(minutes) if minutes is not None else None,
    )


def extract_journey_details(steps: Sequence[AgentStep]) -> Dict[str, Any]:
    payload = last_tool_result(steps, JOURNEY_TOOL)
    if not payload:
        return {}
    journeys: List[Dict[str, Any]] = [j for j in payload.get("journeys") or [] if isinstance(j, dict)]
    traveler_ids = [t for t in payload.get("travelerIds") or [] if isinstance(t, str)]
    details: Dict[str, Any] = {}
    if journeys:
        details["journeyId"] = journeys[0].get("id")
        summary = build_flight_summary(journeys[0])
        if summary is not None:
            details["flight"] = summary.to_json()
    if traveler_ids:
        details["travelerId"] = traveler_ids[0]
        details["travelerIds"] = traveler_ids
    return details


class JourneyIdentificationAgent(BaseStageAgent):
    stage = CheckInStage.JOURNEY_IDENTIFICATION
    allowed_tools = (JOURNEY_TOOL, ELIGIBILITY_TOOL)

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        if record is None:
            return None
        record = {**record, **{k: v for k, v in extract_journey_details(result.steps).items() if v is not None}}
        if record.get("eligibility") is None and not record.get("error"):
            computed = last_tool_result(result.steps, ELIGIBILITY_TOOL) or {}
            record["eligibility"] = computed.get("eligibility")
            if computed.get("error"):
                record["error"] = computed["error"]
        has_eligibility = record.get("eligibility") is not None
        error = record.get("error")
        if has_eligibility and not error:
            record["status"] = StageStatus.SUCCESS.value
            record["continue"] = True
        elif error:
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            if not record.get("userMessage") and isinstance(error, str):
                record["userMessage"] = error
        elif record.get("status") is None:
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
        return record
