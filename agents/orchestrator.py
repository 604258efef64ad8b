from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from agents.agent_loop import AgentLoop
from agents.ancillary_catalogue_agent import AncillaryCatalogueAgent
from agents.base import BaseStageAgent
from agents.begin_conversation_agent import BeginConversationAgent
from agents.boarding_pass_agent import BoardingPassAgent
from agents.chat_model import ChatModel, OpenAIResponsesChatModel
from agents.checkin_acceptance_agent import CheckinAcceptanceAgent
from agents.journey_identification_agent import JourneyIdentificationAgent
from agents.regulatory_details_agent import RegulatoryDetailsAgent
from agents.state_helper import StateHelper, compute_required_fields, to_stage_response
from agents.trip_identification_agent import TripIdentificationAgent
from agents.utterance_parser import (
    extract_booking_reference,
    extract_last_name,
    is_user_confirming,
    mentions_boarding_pass,
)
from agents.validate_process_checkin_agent import ValidateProcessCheckInAgent
from compliance.audit_logger import AuditLogger
from memory.session_store import InMemoryStateStore, StateStore
from models.schemas import (
    CheckInStage,
    FlightSummary,
    SessionState,
    StageResponse,
    StageStatus,
)
from settings import SETTINGS, Settings
from tools.checkin_tools import build_tool_gateway
from tools.gateway import ToolGateway

logger = logging.getLogger(__name__)

StageOutcome = Tuple[StageResponse, Optional[CheckInStage]]
StageHandler = Callable[[SessionState, str], Awaitable[StageOutcome]]

JOURNEY_REQUIRED_FIELDS = ["bookingReference", "lastName"]
JOURNEY_REQUIRED_CHECKS = {
    "bookingReference": lambda facts: not facts.get("bookingReference"),
    "lastName": lambda facts: not facts.get("lastName"),
}
JOURNEY_REQUIRED_LABELS = {"bookingReference": "PNR/bookingReference"}


def with_session_facts(goal: str, facts: Dict[str, Any]) -> str:
    """Append trusted session facts to the utterance handed to a stage agent."""
    lines = []
    for key, value in facts.items():
        if value is None or value == "" or value == []:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        elif isinstance(value, list):
            value = ", ".join(str(item) for item in value)
        lines.append(f"{key}: {value}")
    if not lines:
        return goal
    return f"{goal}\n\nSession facts (trusted):\n" + "\n".join(lines)


def _is_success(response: StageResponse) -> bool:
    return response.status == StageStatus.SUCCESS and response.continue_


class CheckInOrchestrator:
    """Stage state machine for one check-in conversation per session id.

    Each handler runs its stage agent, merges the result into the session and
    returns the next stage (or None to answer the user). ``run`` drives the
    handlers as a trampoline bounded by ``orchestrator_max_transitions``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: StateStore | None = None,
        gateway: ToolGateway | None = None,
        chat_model: ChatModel | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.settings = settings or SETTINGS
        self.store = store or InMemoryStateStore(
            path=self.settings.session_store_path or None,
            default_ttl_seconds=self.settings.session_ttl_seconds,
        )
        self.gateway = gateway or build_tool_gateway(self.settings)
        self.chat_model = chat_model or OpenAIResponsesChatModel(self.settings)
        self.audit_logger = audit_logger or AuditLogger(self.settings.audit_log_path)
        self.helper = StateHelper(self.store)
        self.loop = AgentLoop(self.gateway, self.chat_model)

        agent_types = [
            BeginConversationAgent,
            TripIdentificationAgent,
            JourneyIdentificationAgent,
            ValidateProcessCheckInAgent,
            CheckinAcceptanceAgent,
            BoardingPassAgent,
            RegulatoryDetailsAgent,
            AncillaryCatalogueAgent,
        ]
        self.agents: Dict[CheckInStage, BaseStageAgent] = {}
        for agent_type in agent_types:
            agent = agent_type(self.loop, settings=self.settings, audit_logger=self.audit_logger)
            self.agents[agent.stage] = agent

        self.handlers: Dict[CheckInStage, StageHandler] = {
            CheckInStage.BEGIN_CONVERSATION: self._handle_begin_conversation,
            CheckInStage.TRIP_IDENTIFICATION: self._handle_trip_identification,
            CheckInStage.JOURNEY_IDENTIFICATION: self._handle_journey_identification,
            CheckInStage.JOURNEY_SELECTION: self._handle_journey_selection,
            CheckInStage.VALIDATE_PROCESS_CHECKIN: self._handle_validate_process_checkin,
            CheckInStage.PROCESS_CHECK_IN: self._handle_validate_process_checkin,
            CheckInStage.CHECKIN_ACCEPTANCE: self._handle_checkin_acceptance,
            CheckInStage.BOARDING_PASS: self._handle_boarding_pass,
            CheckInStage.REGULATORY_DETAILS: self._handle_regulatory_details,
            CheckInStage.ANCILLARY_SELECTION: self._handle_ancillary_selection,
        }

    async def run(self, goal: str, session_id: str | None = None) -> StageResponse:
        session_id, state, initial = await self.helper.resolve_session(session_id)
        if initial is not None:
            return initial

        async with self.store.session_lock(session_id):
            state = await self.store.get(session_id) or state
            stage = state.current_stage
            visited: List[CheckInStage] = []
            response: StageResponse | None = None
            for _ in range(max(1, self.settings.orchestrator_max_transitions)):
                handler = self.handlers.get(stage)
                if handler is None:
                    logger.warning("unknown_stage", extra={"session_id": session_id, "stage": stage.value})
                    return self.helper.build_unknown_stage_response(session_id, stage)
                visited.append(stage)
                response, next_stage = await handler(state, goal)
                if next_stage is None:
                    break
                if next_stage in visited:
                    logger.warning(
                        "stage_revisit_stopped",
                        extra={"session_id": session_id, "stage": next_stage.value, "path": [s.value for s in visited]},
                    )
                    break
                await self._advance(state, next_stage)
                stage = next_stage
            else:
                logger.warning(
                    "transition_cap_reached",
                    extra={"session_id": session_id, "cap": self.settings.orchestrator_max_transitions},
                )
        return response

    async def get_session(self, session_id: str) -> SessionState | None:
        return await self.store.get(session_id)

    async def delete_session(self, session_id: str) -> None:
        await self.store.delete(session_id)
        logger.info("session_deleted", extra={"session_id": session_id})

    async def list_tools(self) -> List[Dict[str, Any]]:
        return await self.gateway.build_chat_model_tools()

    async def shutdown(self) -> None:
        await self.gateway.shutdown()

    async def _advance(self, state: SessionState, next_stage: CheckInStage) -> None:
        previous = state.current_stage
        state.current_stage = next_stage
        state.last_step = next_stage.value
        await self.helper.save(state)
        self.audit_logger.log_transition(state.session_id, previous.value, next_stage.value, reason="guard_passed")
        logger.info(
            "stage_transition",
            extra={"session_id": state.session_id, "from_stage": previous.value, "to_stage": next_stage.value},
        )

    async def _run_stage(self, stage: CheckInStage, state: SessionState, goal: str) -> StageResponse:
        response = await self.agents[stage].handle_stage(state.session_id, goal, state)
        self.helper.apply_stage_response(state, response)
        return response

    async def _finish(self, state: SessionState, response: StageResponse) -> StageResponse:
        await self.helper.save(state)
        return response

    async def _handle_begin_conversation(self, state: SessionState, goal: str) -> StageOutcome:
        response = await self._run_stage(CheckInStage.BEGIN_CONVERSATION, state, goal)
        begin = state.begin_conversation
        data = state.data
        data.frequent_flyer_number = begin.frequent_flyer_number or data.frequent_flyer_number
        data.booking_reference = begin.booking_reference or data.booking_reference
        data.last_name = begin.last_name or data.last_name
        data.first_name = begin.first_name or data.first_name
        if data.booking_reference and data.booking_reference.upper() == self.settings.mock_pnr:
            data.use_mock = True
        await self._finish(state, response)
        if not _is_success(response):
            return response, None
        if begin.frequent_flyer_number:
            return response, CheckInStage.TRIP_IDENTIFICATION
        return response, CheckInStage.JOURNEY_IDENTIFICATION

    async def _handle_trip_identification(self, state: SessionState, goal: str) -> StageOutcome:
        known = [booking.get("id") for booking in state.data.pending_bookings]
        pnr = extract_booking_reference(goal, known)
        # a six character frequent flyer number must not read as a PNR
        if pnr and pnr != (state.data.frequent_flyer_number or "").upper():
            state.data.booking_reference = pnr
            state.trip_identification_state.selected_pnr = pnr
            response = to_stage_response(
                state.session_id,
                CheckInStage.TRIP_IDENTIFICATION,
                {"status": StageStatus.SUCCESS.value, "continue": True, "selectedPnr": pnr},
            )
            self.helper.apply_stage_response(state, response)
            await self._finish(state, response)
            return response, CheckInStage.JOURNEY_IDENTIFICATION

        facts = {
            "frequentFlyerNumber": state.data.frequent_flyer_number,
            "lastName": state.data.last_name,
            "useMock": state.data.use_mock or None,
        }
        response = await self._run_stage(CheckInStage.TRIP_IDENTIFICATION, state, with_session_facts(goal, facts))
        payload = response.data or {}
        if isinstance(payload.get("pendingBookings"), list):
            state.data.pending_bookings = payload["pendingBookings"]
        selected = payload.get("selectedPnr")
        if isinstance(selected, str) and selected:
            state.data.booking_reference = selected
        await self._finish(state, response)
        if _is_success(response) and state.data.booking_reference:
            return response, CheckInStage.JOURNEY_IDENTIFICATION
        return response, None

    async def _handle_journey_identification(self, state: SessionState, goal: str) -> StageOutcome:
        data = state.data
        begin = state.begin_conversation
        facts = {
            "bookingReference": data.booking_reference or begin.booking_reference or extract_booking_reference(goal),
            "lastName": data.last_name or begin.last_name or extract_last_name(goal),
        }
        missing = compute_required_fields(
            JOURNEY_REQUIRED_FIELDS, JOURNEY_REQUIRED_CHECKS, facts, JOURNEY_REQUIRED_LABELS
        )
        if missing:
            response = to_stage_response(
                state.session_id,
                CheckInStage.JOURNEY_IDENTIFICATION,
                {
                    "status": StageStatus.USER_INPUT_REQUIRED.value,
                    "continue": False,
                    "userMessage": f"Please provide {' and '.join(missing)} to continue.",
                    "missing": missing,
                },
            )
            self.helper.apply_stage_response(state, response)
            logger.info("journey_fields_missing", extra={"session_id": state.session_id, "missing": missing})
            return await self._finish(state, response), None

        data.booking_reference = facts["bookingReference"].upper()
        data.last_name = facts["lastName"]
        if data.booking_reference == self.settings.mock_pnr:
            data.use_mock = True
        await self.helper.save(state)

        facts["bookingReference"] = data.booking_reference
        facts["useMock"] = data.use_mock or None
        response = await self._run_stage(CheckInStage.JOURNEY_IDENTIFICATION, state, with_session_facts(goal, facts))
        payload = response.data or {}
        if isinstance(payload.get("journeyId"), str):
            data.journey_id = payload["journeyId"]
        if isinstance(payload.get("travelerId"), str):
            data.traveler_id = payload["travelerId"]
        if isinstance(payload.get("flight"), dict):
            data.flight = FlightSummary.model_validate(payload["flight"])
        await self._finish(state, response)
        if _is_success(response):
            return response, CheckInStage.VALIDATE_PROCESS_CHECKIN
        return response, None

    async def _handle_journey_selection(self, state: SessionState, goal: str) -> StageOutcome:
        response = to_stage_response(
            state.session_id,
            CheckInStage.JOURNEY_SELECTION,
            {
                "status": StageStatus.USER_INPUT_REQUIRED.value,
                "continue": False,
                "data": {"choices": [b.get("id") for b in state.data.pending_bookings if b.get("id")]},
            },
        )
        self.helper.apply_stage_response(state, response)
        return await self._finish(state, response), None

    async def _handle_validate_process_checkin(self, state: SessionState, goal: str) -> StageOutcome:
        data = state.data
        facts = {
            "journeyId": data.journey_id,
            "travelerIds": [data.traveler_id] if data.traveler_id else None,
            "useMock": data.use_mock or None,
        }
        response = await self._run_stage(
            CheckInStage.VALIDATE_PROCESS_CHECKIN, state, with_session_facts(goal, facts)
        )
        payload = response.data or {}
        if isinstance(payload.get("travelerId"), str):
            data.traveler_id = payload["travelerId"]
        if isinstance(payload.get("journeyElementId"), str):
            data.journey_element_id = payload["journeyElementId"]
        await self._finish(state, response)
        if is_user_confirming(goal):
            return response, CheckInStage.REGULATORY_DETAILS
        return response, None

    async def _handle_regulatory_details(self, state: SessionState, goal: str) -> StageOutcome:
        data = state.data
        facts = {
            "journeyElementId": data.journey_element_id,
            "travelerId": data.traveler_id,
            "useMock": data.use_mock or None,
        }
        response = await self._run_stage(CheckInStage.REGULATORY_DETAILS, state, with_session_facts(goal, facts))
        payload = response.data or {}
        if "missingFields" in payload or "requiredFieldsMissing" in payload:
            missing = payload.get("missingFields") or payload.get("requiredFieldsMissing") or []
            data.required_regulatory_fields = [field for field in missing if isinstance(field, str)]
        elif _is_success(response):
            data.required_regulatory_fields = []
        await self._finish(state, response)
        if _is_success(response):
            return response, CheckInStage.CHECKIN_ACCEPTANCE
        return response, None

    async def _handle_checkin_acceptance(self, state: SessionState, goal: str) -> StageOutcome:
        data = state.data
        facts = {
            "journeyId": data.journey_id,
            "journeyElementIds": [data.journey_element_id] if data.journey_element_id else None,
            "useMock": data.use_mock or None,
        }
        response = await self._run_stage(CheckInStage.CHECKIN_ACCEPTANCE, state, with_session_facts(goal, facts))
        await self._finish(state, response)
        accepted = (response.data or {}).get("isAccepted") is True
        if mentions_boarding_pass(goal) or (accepted and is_user_confirming(goal)):
            return response, CheckInStage.BOARDING_PASS
        return response, None

    async def _handle_boarding_pass(self, state: SessionState, goal: str) -> StageOutcome:
        data = state.data
        facts = {"journeyId": data.journey_id, "travelerId": data.traveler_id, "useMock": data.use_mock or None}
        response = await self._run_stage(CheckInStage.BOARDING_PASS, state, with_session_facts(goal, facts))
        await self._finish(state, response)
        if is_user_confirming(goal):
            return response, CheckInStage.ANCILLARY_SELECTION
        return response, None

    async def _handle_ancillary_selection(self, state: SessionState, goal: str) -> StageOutcome:
        data = state.data
        facts = {
            "journeyId": data.journey_id,
            "journeyElementId": data.journey_element_id,
            "useMock": data.use_mock or None,
        }
        response = await self._run_stage(CheckInStage.ANCILLARY_SELECTION, state, with_session_facts(goal, facts))
        return await self._finish(state, response), None
