from __future__ import annotations

import copy
import json
from typing import Any, Callable, Dict, Iterable, List, Sequence

from settings import SETTINGS, Settings
from tools.connections import LocalToolConnection, McpHttpConnection, ToolConnection
from tools.gateway import ToolGateway
from tools.rest_adapter import RestRequest, RestToolAdapter, RestToolSpec

DEFAULT_BACKEND_HEADERS = {
    "x-client-application": "SSCI",
    "x-client-channel": "WEB",
}

_HEADERS_SCHEMA = {
    "type": "object",
    "description": "Optional header overrides. Values here override defaults.",
    "properties": {
        "x-correlation-id": {"type": "string"},
        "x-transaction-id": {"type": "string"},
        "x-client-application": {"type": "string"},
        "x-client-channel": {"type": "string"},
    },
}


def _schema(properties: Dict[str, Any], required: Sequence[str] = ()) -> Dict[str, Any]:
    props = {
        **properties,
        "url": {"type": "string", "description": "Optional full endpoint URL override"},
        "useMock": {"type": "boolean"},
        "headers": _HEADERS_SCHEMA,
    }
    schema: Dict[str, Any] = {"type": "object", "properties": props}
    if required:
        schema["required"] = list(required)
    return schema


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _request(method: str, query_keys: Iterable[str] = (), body_keys: Iterable[str] = ()) -> Callable[[str, Dict[str, Any]], RestRequest]:
    query_keys = tuple(query_keys)
    body_keys = tuple(body_keys)

    def build(url: str, args: Dict[str, Any]) -> RestRequest:
        params = {key: args[key] for key in query_keys if args.get(key) not in (None, "")}
        raw_body = args.get("rawBody")
        if isinstance(raw_body, str) and raw_body:
            body: Any = json.loads(raw_body)
        elif body_keys:
            body = {key: args[key] for key in body_keys if args.get(key) not in (None, "")}
        else:
            body = None
        return RestRequest(method="POST" if body is not None else method, url=url, json=body, params=params or None)

    return build


def _passenger_rows(element_ids: Iterable[Any], dictionaries: Dict[str, Any], with_status: bool = False) -> List[Dict[str, Any]]:
    journey_elements = dictionaries.get("journeyElement") or {}
    travelers = dictionaries.get("traveler") or {}
    rows: List[Dict[str, Any]] = []
    for item in element_ids:
        journey_element_id = _text((item or {}).get("id"))
        if not journey_element_id:
            continue
        element = journey_elements.get(journey_element_id)
        if not element:
            continue
        traveler_id = _text(element.get("travelerId"))
        if not traveler_id:
            continue
        traveler = travelers.get(traveler_id) or {}
        names = traveler.get("names") if isinstance(traveler.get("names"), list) else []
        name = names[0] if names else {}
        row = {
            "journeyElementId": journey_element_id,
            "travelerId": traveler_id,
            "title": _text(name.get("title")),
            "firstName": _text(name.get("firstName")),
            "lastName": _text(name.get("lastName")),
            "passengerTypeCode": _text(traveler.get("passengerTypeCode")),
            "flightId": _text(element.get("flightId")),
            "orderId": _text(element.get("orderId")),
        }
        if with_status:
            row["checkInStatus"] = _text(element.get("checkInStatus"))
        rows.append(row)
    return rows


def _full_name(passenger: Dict[str, Any]) -> str:
    parts = [passenger.get("title"), passenger.get("firstName"), passenger.get("lastName")]
    return " ".join(part for part in parts if part)


def compute_trip_identification_result(payload: Any) -> Dict[str, Any]:
    bookings = payload.get("data") if isinstance(payload, dict) else None
    return {"data": bookings if isinstance(bookings, list) else []}


def compute_journey_result(payload: Any) -> Dict[str, Any]:
    payload = payload if isinstance(payload, dict) else {}
    journeys = payload.get("journeys") if isinstance(payload.get("journeys"), list) else []
    travelers = payload.get("travelers") if isinstance(payload.get("travelers"), list) else []
    return {
        "journeys": journeys,
        "travelers": travelers,
        "travelerIds": [traveler["id"] for traveler in travelers if isinstance(traveler, dict) and traveler.get("id")],
    }


# checked in order after acceptance and IsCheckInOpened
ELIGIBILITY_RULES = [
    ("IsBusJourney", "busJourney"),
    ("IsTrainJourney", "trainJourney"),
    ("IsFirstFlightOtherAirline", "firstFlightOtherAirline"),
    ("IsCheckInCompleted", "completed"),
    ("IsDeeplinkInhibition", "deeplinkInhibition"),
    ("IsCheckInNotAvailable", "notAvailable"),
    ("IsPartialClosedNotFlown", "partialClosedNotFlown"),
    ("IsPartial", "partial"),
    ("IsCheckedInAndClosedNotFlown", "checkedInAndClosedNotFlown"),
    ("IsCheckInClosedNotFlown", "closedNotFlown"),
    ("IsNotOpened", "notOpened"),
    ("ServiceNotSupported", "serviceNotSupported"),
]


def compute_journey_eligibility(payload: Any) -> Dict[str, Any]:
    payload = payload if isinstance(payload, dict) else {}
    journeys = payload.get("journeys") if isinstance(payload.get("journeys"), list) else []
    eligibilities = [e for e in payload.get("genericEligibilities") or [] if isinstance(e, dict) and e.get("isEligible") is True]

    def find(journey_id: str, names: Sequence[str]) -> Dict[str, Any] | None:
        wanted = {name.lower() for name in names}
        for entry in eligibilities:
            # backend spells the key "eligiblityName"
            name = str(entry.get("eligiblityName") or entry.get("eligibilityName") or "").lower()
            if name in wanted and journey_id in (entry.get("journeyIds") or []):
                return entry
        return None

    results: List[Dict[str, Any]] = []
    for journey in journeys:
        journey_id = str(journey.get("id") or "")
        acceptance = journey.get("acceptance") or {}
        status, rule = "ineligible", None
        if acceptance.get("isAccepted") is True or acceptance.get("checkedInJourneyElements"):
            status, rule = "completed", "Acceptance.isAccepted"
        elif find(journey_id, ["IsCheckInOpen", "IsCheckInOpened"]):
            status, rule = "opened", "IsCheckInOpened"
        else:
            for rule_name, rule_status in ELIGIBILITY_RULES:
                if find(journey_id, [rule_name]):
                    status, rule = rule_status, rule_name
                    break
        results.append({"journeyId": journey_id, "checkInStatus": status, "matchedRule": rule})
    error = None if results else "No journeys found for this booking."
    return {"eligibility": results or None, "error": error}


def compute_passengers_to_check_in(payload: Any) -> Dict[str, Any]:
    payload = payload if isinstance(payload, dict) else {}
    data = payload.get("data") or {}
    passengers = _passenger_rows(data.get("notCheckedInJourneyElements") or [], payload.get("dictionaries") or {})
    prompt = None
    if len(passengers) == 1:
        prompt = f"Do you want to check in this passenger: {_full_name(passengers[0])}?"
    elif passengers:
        prompt = f"Do you want to check in these passengers: {', '.join(_full_name(p) for p in passengers)}?"
    return {"passengersToCheckIn": passengers, "prompt": prompt, "error": None}


def compute_checkin_acceptance_result(payload: Any) -> Dict[str, Any]:
    payload = payload if isinstance(payload, dict) else {}
    data = payload.get("data") or {}
    passengers = _passenger_rows(
        data.get("checkedInJourneyElements") or [], payload.get("dictionaries") or {}, with_status=True
    )
    is_accepted = data.get("isAccepted")
    is_partial = data.get("isPartial")
    message = None
    if is_accepted is True:
        message = "Check-in completed successfully."
    elif is_partial is True:
        message = "Check-in partially completed."
    return {
        "isAccepted": is_accepted,
        "isPartial": is_partial,
        "checkinStatusMessage": message,
        "checkedInPassengers": passengers,
        "error": None,
    }


def compute_boarding_pass_result(payload: Any) -> Dict[str, Any]:
    payload = payload if isinstance(payload, dict) else {}
    passes = payload.get("boardingPasses") or []
    legs = [leg for item in passes for leg in (item.get("legs") or []) if isinstance(leg, dict)]
    eligibility_status = next((_text(leg.get("eligibility")) for leg in legs if _text(leg.get("eligibility"))), None)
    return {
        "isBoardingPassEligible": any(_text(leg.get("eligibility")) == "BOARDING_PASS_ELIGIBLE" for leg in legs),
        "eligibilityStatus": eligibility_status,
        "boardingPasses": passes,
        "error": None,
    }


def compute_regulatory_details_result(payload: Any) -> Dict[str, Any]:
    payload = payload if isinstance(payload, dict) else {}
    data = payload.get("data") or {}
    missing_details = data.get("missingDetails") or []
    required = [
        field
        for item in missing_details
        if isinstance(item, dict) and item.get("isOptional") is False
        for choice in item.get("detailsChoices") or []
        for field in choice.get("requiredDetailsFields") or []
        if isinstance(field, str) and field
    ]
    return {
        "statusCleared": data.get("statusCleared"),
        "requiredFieldsMissing": required,
        "missingDetails": missing_details,
        "error": None,
    }


SERVICE_LABELS = {
    "businessClassLoungeAccessDetails": "Business class lounge available for purchase",
    "firstClassLoungeAccessDetails": "First class lounge available for purchase",
    "priorityAccessDetails": "Priority access available for purchase",
}


def compute_ancillary_catalogue_result(payload: Any) -> Dict[str, Any]:
    payload = payload if isinstance(payload, dict) else {}
    details = payload.get("serviceDetails") or {}
    available = [
        {"key": key, "label": SERVICE_LABELS.get(key, key)}
        for key, value in details.items()
        if isinstance(value, dict) and value.get("showService") is True
    ]
    return {
        "hasAncillaryForPurchase": bool(available),
        "availableServices": available,
        "serviceDetails": {item["key"]: details[item["key"]] for item in available},
        "error": None,
    }


_MOCK_FLIGHTS = [
    {
        "id": "EY011-2025-01-01",
        "marketingAirlineCode": "EY",
        "marketingFlightNumber": "011",
        "departure": {"locationCode": "AUH", "dateTime": "2025-01-01T10:00:00Z"},
        "arrival": {"locationCode": "LHR", "dateTime": "2025-01-01T12:30:00Z"},
    }
]

_MOCK_DICTIONARIES = {
    "journeyElement": {
        "JE-1": {"travelerId": "T-1", "flightId": "EY011-2025-01-01", "orderId": "7MHQTY", "checkInStatus": "checkedIn"},
    },
    "traveler": {
        "T-1": {"passengerTypeCode": "ADT", "names": [{"title": "MR", "firstName": "John", "lastName": "Smith"}]},
    },
}


def mock_trip_identification(args: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "data": [
            {"id": "7MHQTY", "flights": _MOCK_FLIGHTS, "travelers": [{"names": [{"lastName": args.get("lastName") or "Smith"}]}]},
            {"id": "8KLPQR", "flights": _MOCK_FLIGHTS, "travelers": [{"names": [{"lastName": args.get("lastName") or "Smith"}]}]},
        ]
    }


def mock_journey(args: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "journeys": [{"id": "J-7MHQTY-1", "flights": _MOCK_FLIGHTS, "acceptance": {"isAccepted": False}}],
        "travelers": [{"id": "T-1", "names": [{"firstName": "John", "lastName": args.get("lastName") or "Smith"}]}],
        "genericEligibilities": [{"eligiblityName": "IsCheckInOpened", "isEligible": True, "journeyIds": ["J-7MHQTY-1"]}],
    }


def mock_validate_process_checkin(args: Dict[str, Any]) -> Dict[str, Any]:
    return {"data": {"notCheckedInJourneyElements": [{"id": "JE-1"}]}, "dictionaries": copy.deepcopy(_MOCK_DICTIONARIES)}


def mock_regulatory_details(args: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "data": {
            "statusCleared": False,
            "missingDetails": [
                {"isOptional": False, "detailsChoices": [{"requiredDetailsFields": ["nationalityCountryCode"]}]},
                {"isOptional": True, "detailsChoices": [{"requiredDetailsFields": ["emergencyContact"]}]},
            ],
        }
    }


def mock_regulatory_details_update(args: Dict[str, Any]) -> Dict[str, Any]:
    return {"data": {"statusCleared": True, "missingDetails": []}}


def mock_checkin_acceptance(args: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "data": {"isAccepted": True, "isPartial": False, "checkedInJourneyElements": [{"id": "JE-1"}]},
        "dictionaries": copy.deepcopy(_MOCK_DICTIONARIES),
    }


def mock_boarding_pass(args: Dict[str, Any]) -> Dict[str, Any]:
    return {"boardingPasses": [{"travelerId": "T-1", "legs": [{"flightId": "EY011-2025-01-01", "eligibility": "BOARDING_PASS_ELIGIBLE"}]}]}


def mock_ancillary_catalogue(args: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "serviceDetails": {
            "priorityAccessDetails": {"showService": True, "price": {"amount": 75, "currency": "AED"}},
            "businessClassLoungeAccessDetails": {"showService": True, "price": {"amount": 350, "currency": "AED"}},
            "firstClassLoungeAccessDetails": {"showService": False},
        }
    }


CHECKIN_TOOL_SPECS: List[RestToolSpec] = [
    RestToolSpec(
        name="trip_identification",
        description="Find bookings for a frequent flyer number and last name.",
        path="/v1/ffp/bookings",
        input_schema=_schema(
            {"frequentFlyerNumber": {"type": "string"}, "lastName": {"type": "string"}},
            required=["frequentFlyerNumber", "lastName"],
        ),
        request_builder=_request("GET", query_keys=("frequentFlyerNumber", "lastName")),
        result_builder=compute_trip_identification_result,
        mock_fixture=mock_trip_identification,
    ),
    RestToolSpec(
        name="ssci_identification_journey",
        description="Retrieve journeys and travelers for a booking reference and last name.",
        path="/v1/journeys",
        input_schema=_schema(
            {"bookingReference": {"type": "string"}, "lastName": {"type": "string"}},
            required=["bookingReference", "lastName"],
        ),
        request_builder=_request("GET", query_keys=("bookingReference", "lastName")),
        result_builder=compute_journey_result,
        mock_fixture=mock_journey,
    ),
    RestToolSpec(
        name="ssci_identification_journey_eligibility",
        description="Compute check-in eligibility for each journey of a booking.",
        path="/v1/journeys",
        input_schema=_schema(
            {"bookingReference": {"type": "string"}, "lastName": {"type": "string"}},
            required=["bookingReference", "lastName"],
        ),
        request_builder=_request("GET", query_keys=("bookingReference", "lastName")),
        result_builder=compute_journey_eligibility,
        mock_fixture=mock_journey,
    ),
    RestToolSpec(
        name="ssci_validate_process_checkin",
        description="Validate which passengers of a journey can be checked in.",
        path="/v1/checkin/validate",
        method="POST",
        input_schema=_schema(
            {"journeyId": {"type": "string"}, "travelerIds": {"type": "array", "items": {"type": "string"}}, "rawBody": {"type": "string"}},
            required=["journeyId"],
        ),
        request_builder=_request("POST", body_keys=("journeyId", "travelerIds")),
        result_builder=compute_passengers_to_check_in,
        mock_fixture=mock_validate_process_checkin,
    ),
    RestToolSpec(
        name="ssci_regulatory_details",
        description="Get regulatory details and return missing required details.",
        path="/v1/regulatory-details",
        input_schema=_schema(
            {"journeyElementId": {"type": "string"}, "travelerId": {"type": "string"}},
            required=["journeyElementId", "travelerId"],
        ),
        request_builder=_request("GET", query_keys=("journeyElementId", "travelerId")),
        result_builder=compute_regulatory_details_result,
        mock_fixture=mock_regulatory_details,
    ),
    RestToolSpec(
        name="ssci_regulatory_details_update",
        description="Submit regulatory details (nationality, documents, consents) for a traveler.",
        path="/v1/regulatory-details",
        method="POST",
        input_schema=_schema(
            {
                "journeyElementId": {"type": "string"},
                "travelerId": {"type": "string"},
                "nationalityCountryCode": {"type": "string"},
                "rawBody": {"type": "string"},
            },
            required=["journeyElementId", "travelerId"],
        ),
        request_builder=_request("POST", body_keys=("journeyElementId", "travelerId", "nationalityCountryCode")),
        result_builder=compute_regulatory_details_result,
        mock_fixture=mock_regulatory_details_update,
    ),
    RestToolSpec(
        name="ssci_checkin_acceptance",
        description="Accept check-in for the selected passengers.",
        path="/v1/checkin/acceptance",
        method="POST",
        input_schema=_schema(
            {"journeyId": {"type": "string"}, "journeyElementIds": {"type": "array", "items": {"type": "string"}}, "rawBody": {"type": "string"}},
            required=["journeyId"],
        ),
        request_builder=_request("POST", body_keys=("journeyId", "journeyElementIds")),
        result_builder=compute_checkin_acceptance_result,
        mock_fixture=mock_checkin_acceptance,
    ),
    RestToolSpec(
        name="ssci_boarding_pass",
        description="Get boarding passes and report boarding pass eligibility.",
        path="/v1/boarding-passes",
        input_schema=_schema(
            {"journeyId": {"type": "string"}, "travelerId": {"type": "string"}},
            required=["journeyId"],
        ),
        request_builder=_request("GET", query_keys=("journeyId", "travelerId")),
        result_builder=compute_boarding_pass_result,
        mock_fixture=mock_boarding_pass,
    ),
    RestToolSpec(
        name="ssci_ancillary_catalogue",
        description="Get ancillary catalogue and return purchasable services.",
        path="/v1/ancillaries/catalogue",
        input_schema=_schema(
            {"journeyId": {"type": "string"}, "journeyElementId": {"type": "string"}, "rawBody": {"type": "string"}},
        ),
        request_builder=_request("GET", query_keys=("journeyId", "journeyElementId")),
        result_builder=compute_ancillary_catalogue_result,
        mock_fixture=mock_ancillary_catalogue,
    ),
]


def build_checkin_adapters(settings: Settings | None = None) -> List[RestToolAdapter]:
    settings = settings or SETTINGS
    return [
        RestToolAdapter(
            spec,
            base_url=settings.ssci_base_url,
            default_headers=DEFAULT_BACKEND_HEADERS,
            timeout_seconds=settings.backend_timeout_seconds,
            mock_enabled=settings.mock_backends,
            mock_delay_ms=settings.mock_delay_ms,
        )
        for spec in CHECKIN_TOOL_SPECS
    ]


def build_checkin_tool_connection(settings: Settings | None = None, name: str = "checkin") -> LocalToolConnection:
    return LocalToolConnection(name=name, tools=[adapter.as_local_tool() for adapter in build_checkin_adapters(settings)])


def build_tool_gateway(settings: Settings | None = None) -> ToolGateway:
    settings = settings or SETTINGS
    connections: List[ToolConnection] = [
        McpHttpConnection(
            name=server.name,
            url=server.url,
            tool_name_prefix=server.tool_name_prefix,
            client_name=server.client_name or settings.mcp_client_name,
            client_version=server.client_version or settings.mcp_client_version,
            timeout_seconds=settings.backend_timeout_seconds,
        )
        for server in settings.mcp_servers
    ]
    if settings.local_tools_enabled:
        connections.append(build_checkin_tool_connection(settings))
    return ToolGateway(
        connections,
        collision_strategy=settings.tool_collision_strategy,
        namespace_separator=settings.tool_namespace_separator,
        namespace_key=settings.tool_namespace_key,
    )
