from __future__ import annotations

import asyncio

from models.schemas import CheckInStage, StageStatus
from tools.checkin_tools import CHECKIN_TOOL_SPECS


def test_frequent_flyer_picks_one_of_two_bookings(orchestrator, chat_model, script):
    async def _run():
        session_id = (await orchestrator.run("hello")).session_id

        chat_model.queue(
            script.final({"frequentFlyerNumber": "EY1234567"}),
            script.tool_call("trip_identification", {"frequentFlyerNumber": "EY1234567", "lastName": "Smith"}),
            script.final({}),
        )
        choice = await orchestrator.run("my card is frequentFlyerCardNumber EY1234567 lastName Smith", session_id)
        assert choice.stage == CheckInStage.TRIP_IDENTIFICATION
        assert choice.status == StageStatus.USER_INPUT_REQUIRED
        assert choice.data["choices"] == ["7MHQTY", "8KLPQR"]
        assert "7MHQTY is available for check-in" in choice.user_message
        trip_request = chat_model.requests[1]["input"][0]["content"][0]["text"]
        assert "frequentFlyerNumber: EY1234567" in trip_request
        assert "lastName: Smith" in trip_request

        # naming a PNR skips the lookup and lands on the mock booking
        chat_model.queue(
            script.tool_calls(
                ("ssci_identification_journey", {"bookingReference": "7MHQTY", "lastName": "Smith"}, "c1"),
                ("ssci_identification_journey_eligibility", {"bookingReference": "7MHQTY", "lastName": "Smith"}, "c2"),
            ),
            script.final({}),
            script.tool_call("ssci_validate_process_checkin", {"journeyId": "J-7MHQTY-1"}),
            script.final({}),
        )
        validate = await orchestrator.run("7MHQTY", session_id)
        assert validate.stage == CheckInStage.VALIDATE_PROCESS_CHECKIN
        assert validate.user_message == "Do you want to check in this passenger: John Smith?"
        journey_request = chat_model.requests[3]["input"][0]["content"][0]["text"]
        assert "bookingReference: 7MHQTY" in journey_request
        assert "useMock: true" in journey_request

        state = await orchestrator.get_session(session_id)
        assert state.trip_identification_state.selected_pnr == "7MHQTY"
        assert state.data.use_mock is True
        assert state.data.frequent_flyer_number == "EY1234567"

    asyncio.run(_run())


def test_single_booking_advances_without_asking(orchestrator, chat_model, script, monkeypatch):
    async def _run():
        trip_spec = next(spec for spec in CHECKIN_TOOL_SPECS if spec.name == "trip_identification")
        monkeypatch.setattr(trip_spec, "mock_fixture", lambda args: {"data": [{"id": "8KLPQR", "flights": []}]})
        session_id = (await orchestrator.run("hello")).session_id

        chat_model.queue(
            script.final({}),
            script.tool_call("trip_identification", {"frequentFlyerNumber": "EY1234567", "lastName": "Smith"}),
            script.final({}),
            script.tool_call("ssci_identification_journey", {"bookingReference": "8KLPQR", "lastName": "Smith"}),
            script.final({"status": "FAILED", "userMessage": "Journey lookup failed."}),
        )
        response = await orchestrator.run("frequentFlyerCardNumber EY1234567 lastName Smith", session_id)
        assert response.stage == CheckInStage.JOURNEY_IDENTIFICATION
        assert response.status == StageStatus.FAILED
        state = await orchestrator.get_session(session_id)
        assert state.data.booking_reference == "8KLPQR"
        assert state.data.use_mock is False
        assert state.current_stage == CheckInStage.JOURNEY_IDENTIFICATION

    asyncio.run(_run())
