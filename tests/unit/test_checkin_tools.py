from __future__ import annotations

import asyncio
import json

import httpx

from tools.checkin_tools import (
    CHECKIN_TOOL_SPECS,
    build_tool_gateway,
    compute_ancillary_catalogue_result,
    compute_boarding_pass_result,
    compute_checkin_acceptance_result,
    compute_journey_eligibility,
    compute_passengers_to_check_in,
    compute_regulatory_details_result,
    mock_checkin_acceptance,
    mock_validate_process_checkin,
)
from tools.rest_adapter import RestToolAdapter


def _spec(name):
    return next(spec for spec in CHECKIN_TOOL_SPECS if spec.name == name)


def _payload(result):
    return json.loads(result["content"][0]["text"])


def test_eligibility_prefers_acceptance_then_open_then_rules():
    payload = {
        "journeys": [
            {"id": "J1", "acceptance": {"isAccepted": True}},
            {"id": "J2", "acceptance": {}},
            {"id": "J3"},
            {"id": "J4"},
        ],
        "genericEligibilities": [
            {"eligiblityName": "IsCheckInOpened", "isEligible": True, "journeyIds": ["J2"]},
            {"eligiblityName": "IsNotOpened", "isEligible": True, "journeyIds": ["J3"]},
            {"eligiblityName": "IsBusJourney", "isEligible": False, "journeyIds": ["J4"]},
        ],
    }
    result = compute_journey_eligibility(payload)
    assert [item["checkInStatus"] for item in result["eligibility"]] == ["completed", "opened", "notOpened", "ineligible"]
    assert result["eligibility"][2]["matchedRule"] == "IsNotOpened"
    assert result["error"] is None


def test_eligibility_without_journeys_reports_error():
    assert compute_journey_eligibility({"journeys": []}) == {
        "eligibility": None,
        "error": "No journeys found for this booking.",
    }


def test_passengers_prompt_uses_full_names():
    result = compute_passengers_to_check_in(mock_validate_process_checkin({}))
    assert result["prompt"] == "Do you want to check in this passenger: MR John Smith?"
    assert result["passengersToCheckIn"][0]["journeyElementId"] == "JE-1"
    assert result["passengersToCheckIn"][0]["travelerId"] == "T-1"
    assert compute_passengers_to_check_in({})["prompt"] is None


def test_acceptance_result_flags_and_message():
    result = compute_checkin_acceptance_result(mock_checkin_acceptance({}))
    assert result["isAccepted"] is True
    assert result["checkinStatusMessage"] == "Check-in completed successfully."
    assert result["checkedInPassengers"][0]["checkInStatus"] == "checkedIn"
    partial = compute_checkin_acceptance_result({"data": {"isAccepted": False, "isPartial": True}})
    assert partial["checkinStatusMessage"] == "Check-in partially completed."


def test_boarding_pass_eligibility():
    eligible = compute_boarding_pass_result({"boardingPasses": [{"legs": [{"eligibility": "BOARDING_PASS_ELIGIBLE"}]}]})
    assert eligible["isBoardingPassEligible"] is True
    blocked = compute_boarding_pass_result({"boardingPasses": [{"legs": [{"eligibility": "NOT_ELIGIBLE"}]}]})
    assert blocked["isBoardingPassEligible"] is False
    assert blocked["eligibilityStatus"] == "NOT_ELIGIBLE"


def test_regulatory_required_fields_skip_optional_details():
    payload = {
        "data": {
            "statusCleared": False,
            "missingDetails": [
                {"isOptional": False, "detailsChoices": [{"requiredDetailsFields": ["nationalityCountryCode", "birthDate"]}]},
                {"isOptional": True, "detailsChoices": [{"requiredDetailsFields": ["emergencyContact"]}]},
            ],
        }
    }
    result = compute_regulatory_details_result(payload)
    assert result["requiredFieldsMissing"] == ["nationalityCountryCode", "birthDate"]
    assert result["statusCleared"] is False


def test_ancillary_catalogue_lists_shown_services_only():
    result = compute_ancillary_catalogue_result(
        {
            "serviceDetails": {
                "priorityAccessDetails": {"showService": True, "price": {"amount": 75, "currency": "AED"}},
                "firstClassLoungeAccessDetails": {"showService": False},
            }
        }
    )
    assert result["hasAncillaryForPurchase"] is True
    assert result["availableServices"] == [
        {"key": "priorityAccessDetails", "label": "Priority access available for purchase"}
    ]
    assert list(result["serviceDetails"]) == ["priorityAccessDetails"]


def test_adapter_serves_mock_fixture():
    async def _run():
        adapter = RestToolAdapter(_spec("ssci_boarding_pass"), base_url="https://backend.test", mock_enabled=True)
        result = await adapter({"journeyId": "J-7MHQTY-1"})
        assert "isError" not in result
        assert _payload(result)["isBoardingPassEligible"] is True

    asyncio.run(_run())


def test_adapter_calls_backend_with_headers_and_query():
    async def _run():
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"journeys": [{"id": "J9", "acceptance": {"isAccepted": True}}]})

        adapter = RestToolAdapter(
            _spec("ssci_identification_journey_eligibility"),
            base_url="https://backend.test/",
            default_headers={"x-client-channel": "WEB"},
            mock_enabled=True,
            transport=httpx.MockTransport(handler),
        )
        result = await adapter(
            {"bookingReference": "AB12CD", "lastName": "Smith", "useMock": False, "headers": {"x-correlation-id": "c-1"}}
        )
        assert _payload(result)["eligibility"][0]["checkInStatus"] == "completed"
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/v1/journeys"
        assert request.url.params["bookingReference"] == "AB12CD"
        assert request.headers["x-client-channel"] == "WEB"
        assert request.headers["x-correlation-id"] == "c-1"

    asyncio.run(_run())


def test_adapter_raw_body_forces_post():
    async def _run():
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": {"notCheckedInJourneyElements": []}})

        adapter = RestToolAdapter(
            _spec("ssci_validate_process_checkin"),
            base_url="https://backend.test",
            mock_enabled=False,
            transport=httpx.MockTransport(handler),
        )
        await adapter({"journeyId": "J1", "rawBody": '{"custom": true}'})
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"custom": True}

    asyncio.run(_run())


def test_adapter_rejects_invalid_raw_body():
    async def _run():
        adapter = RestToolAdapter(_spec("ssci_validate_process_checkin"), base_url="https://backend.test")
        result = await adapter({"journeyId": "J1", "rawBody": "{broken"})
        assert result == {"isError": True, "content": [{"type": "text", "text": "rawBody must be valid JSON string"}]}

    asyncio.run(_run())


def test_adapter_http_failure_becomes_tool_error():
    async def _run():
        adapter = RestToolAdapter(
            _spec("ssci_boarding_pass"),
            base_url="https://backend.test",
            mock_enabled=False,
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        result = await adapter({"journeyId": "J1"})
        assert result["isError"] is True

    asyncio.run(_run())


def test_tool_gateway_exposes_all_checkin_tools(test_settings):
    async def _run():
        gateway = build_tool_gateway(test_settings)
        names = {tool["name"] for tool in await gateway.list_tools()}
        assert names == {spec.name for spec in CHECKIN_TOOL_SPECS}

    asyncio.run(_run())
