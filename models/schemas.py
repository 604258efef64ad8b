from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CheckInStage(str, Enum):
    BEGIN_CONVERSATION = "BEGIN_CONVERSATION"
    TRIP_IDENTIFICATION = "TRIP_IDENTIFICATION"
    JOURNEY_IDENTIFICATION = "JOURNEY_IDENTIFICATION"
    JOURNEY_SELECTION = "JOURNEY_SELECTION"
    VALIDATE_PROCESS_CHECKIN = "VALIDATE_PROCESS_CHECKIN"
    PROCESS_CHECK_IN = "PROCESS_CHECK_IN"
    CHECKIN_ACCEPTANCE = "CHECKIN_ACCEPTANCE"
    BOARDING_PASS = "BOARDING_PASS"
    REGULATORY_DETAILS = "REGULATORY_DETAILS"
    ANCILLARY_SELECTION = "ANCILLARY_SELECTION"


class StageStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    USER_INPUT_REQUIRED = "USER_INPUT_REQUIRED"


class CamelModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class StageError(CamelModel):
    code: str
    message: Optional[str] = None
    details: Optional[Any] = None


class BaseStageState(CamelModel):
    status: StageStatus = StageStatus.NOT_STARTED
    continue_: bool = Field(default=False, alias="continue")
    updated_at_utc: str = Field(default_factory=utc_now_iso)
    started_at_utc: Optional[str] = None
    completed_at_utc: Optional[str] = None
    last_event_id: Optional[str] = None
    attempt: Optional[int] = None
    error: Optional[StageError] = None
    user_message: Optional[str] = None


class BeginConversationState(BaseStageState):
    frequent_flyer_number: Optional[str] = None
    booking_reference: Optional[str] = None
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    missing: List[str] = Field(default_factory=list)


class TripIdentificationState(BaseStageState):
    selected_pnr: Optional[str] = None
    choices: List[str] = Field(default_factory=list)
    recommended_pnr: Optional[str] = None
    user_confirmation: Optional[bool] = None
    missing: List[str] = Field(default_factory=list)


class FlightSummary(CamelModel):
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure: Optional[str] = None
    arrival: Optional[str] = None
    duration_minutes: Optional[int] = None
    duration_text: Optional[str] = None


class JourneyIdentificationState(BaseStageState):
    journey_id: Optional[str] = None
    traveler_id: Optional[str] = None
    flight: Optional[FlightSummary] = None
    eligibility: Optional[Any] = None


class JourneySelectionState(BaseStageState):
    selected_journey_id: Optional[str] = None


class ValidateProcessCheckInState(BaseStageState):
    passengers_to_check_in: List[Dict[str, Any]] = Field(default_factory=list)
    prompt: Optional[str] = None


class CheckinAcceptanceState(BaseStageState):
    is_accepted: Optional[bool] = None
    is_partial: Optional[bool] = None
    checked_in_passengers: List[Dict[str, Any]] = Field(default_factory=list)


class BoardingPassState(BaseStageState):
    is_boarding_pass_eligible: Optional[bool] = None
    eligibility_status: Optional[str] = None


class RegulatoryDetailsState(BaseStageState):
    required_fields_missing: List[str] = Field(default_factory=list)
    status_cleared: Optional[bool] = None


class AncillarySelectionState(BaseStageState):
    has_ancillary_for_purchase: Optional[bool] = None
    available_services: List[Dict[str, Any]] = Field(default_factory=list)
    payment_requested: Optional[bool] = None


class SessionData(CamelModel):
    booking_reference: Optional[str] = None
    last_name: Optional[str] = None
    first_name: Optional[str] = None
    frequent_flyer_number: Optional[str] = None
    journey_id: Optional[str] = None
    traveler_id: Optional[str] = None
    journey_element_id: Optional[str] = None
    use_mock: bool = False
    pending_bookings: List[Dict[str, Any]] = Field(default_factory=list)
    required_regulatory_fields: List[str] = Field(default_factory=list)
    flight: Optional[FlightSummary] = None
    extras: Dict[str, Any] = Field(default_factory=dict)


class SessionState(CamelModel):
    session_id: str
    current_stage: CheckInStage = CheckInStage.BEGIN_CONVERSATION
    begin_conversation: BeginConversationState = Field(default_factory=BeginConversationState)
    trip_identification_state: TripIdentificationState = Field(default_factory=TripIdentificationState)
    journey_identification_state: JourneyIdentificationState = Field(default_factory=JourneyIdentificationState)
    journey_selection_state: JourneySelectionState = Field(default_factory=JourneySelectionState)
    validate_process_check_in_state: ValidateProcessCheckInState = Field(default_factory=ValidateProcessCheckInState)
    checkin_acceptance_state: CheckinAcceptanceState = Field(default_factory=CheckinAcceptanceState)
    boarding_pass_state: BoardingPassState = Field(default_factory=BoardingPassState)
    regulatory_details_state: RegulatoryDetailsState = Field(default_factory=RegulatoryDetailsState)
    ancillary_selection_state: AncillarySelectionState = Field(default_factory=AncillarySelectionState)
    data: SessionData = Field(default_factory=SessionData)
    last_step: Optional[str] = None
    version: int = 0


# stage -> SessionState attribute holding its sub-record
STAGE_STATE_FIELDS: Dict[CheckInStage, str] = {
    CheckInStage.BEGIN_CONVERSATION: "begin_conversation",
    CheckInStage.TRIP_IDENTIFICATION: "trip_identification_state",
    CheckInStage.JOURNEY_IDENTIFICATION: "journey_identification_state",
    CheckInStage.JOURNEY_SELECTION: "journey_selection_state",
    CheckInStage.VALIDATE_PROCESS_CHECKIN: "validate_process_check_in_state",
    CheckInStage.PROCESS_CHECK_IN: "validate_process_check_in_state",
    CheckInStage.CHECKIN_ACCEPTANCE: "checkin_acceptance_state",
    CheckInStage.BOARDING_PASS: "boarding_pass_state",
    CheckInStage.REGULATORY_DETAILS: "regulatory_details_state",
    CheckInStage.ANCILLARY_SELECTION: "ancillary_selection_state",
}


class StageResponse(CamelModel):
    """Uniform envelope returned to the caller and merged into session state.

    Stage-specific fields (``missing``, ``choices``, ``passengersToCheckIn`` ...)
    ride along as extra attributes.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    session_id: str
    stage: CheckInStage
    status: StageStatus
    continue_: bool = Field(default=False, alias="continue")
    updated_at_utc: str = Field(default_factory=utc_now_iso)
    started_at_utc: Optional[str] = None
    completed_at_utc: Optional[str] = None
    last_event_id: Optional[str] = None
    attempt: Optional[int] = None
    error: Optional[StageError] = None
    user_message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    steps: Optional[List[Dict[str, Any]]] = None

    @property
    def extras(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class AgentStep(BaseModel):
    action: str
    tool: Optional[str] = None
    args: Optional[Any] = None
    result: Optional[Any] = None
    error: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass
class AgentRunOptions:
    allowed_tools: Optional[List[str]] = None
    blocked_tools: Optional[List[str]] = None
    system_prompt: str = ""
    continue_prompt: str = "Continue. Use tools if needed."
    computed_notes_template: str = "{notes}"
    max_model_calls: int = 6
    enforce_tool_use: bool = False
    tool_use_prompt: Optional[str] = None
    tool_choice: Optional[str] = None
    max_tool_enforcement_retries: int = 3
    max_invalid_tool_args: int = 5


@dataclass
class AgentRunResult:
    goal: str
    steps: List[AgentStep] = field(default_factory=list)
    final: Any = None


class ToolCallRecord(BaseModel):
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result_summary: str = ""
    success: bool = True
    duration_ms: int = 0


class AgentDecisionLog(BaseModel):
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str
    agent: str
    stage: str
    action: str
    reasoning: str
    tool_calls: List[ToolCallRecord] = Field(default_factory=list)
    duration_ms: int = 0
    outcome: str = "ok"


class RunRequest(CamelModel):
    goal: str = ""
    session_id: Optional[str] = None
