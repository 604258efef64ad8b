from __future__ import annotations

from typing import Any, Dict, List, Optional

from agents.base import BaseStageAgent, last_tool_result
from agents.utterance_parser import is_user_confirming
from models.schemas import AgentRunResult, CheckInStage, SessionState, StageStatus

ANCILLARY_TOOL = "ssci_ancillary_catalogue"

FRIENDLY_SERVICE_NAMES = {
    "priorityAccessDetails": "priority access",
    "businessClassLoungeAccessDetails": "business class lounge access",
    "firstClassLoungeAccessDetails": "first class lounge access",
}


def service_keys(record: Dict[str, Any]) -> List[str]:
    services = record.get("availableServices")
    if not isinstance(services, list):
        return []
    return [s["key"] for s in services if isinstance(s, dict) and isinstance(s.get("key"), str) and s["key"]]


def first_price(service_details: Any, keys: List[str]) -> Optional[Dict[str, Any]]:
    """Price block of the first listed service that carries one."""
    if not isinstance(service_details, dict):
        return None
    for key in keys or list(service_details):
        price = (service_details.get(key) or {}).get("price")
        if isinstance(price, dict) and price.get("amount") is not None:
            return {"key": key, "amount": price.get("amount"), "currency": price.get("currency")}
    return None


def build_purchase_prompt(labels: List[str]) -> str:
    suffix = f"Do you want to purchase {', '.join(labels)}?" if labels else "Do you want to purchase ancillary services?"
    return f"Boarding pass added to wallet. {suffix}"


def build_payment_prompt(price: Optional[Dict[str, Any]]) -> str:
    if not price:
        return "Please proceed to payment to complete your purchase."
    label = FRIENDLY_SERVICE_NAMES.get(price["key"], price["key"])
    currency = f" {price['currency']}" if price.get("currency") else ""
    return f"Please proceed to payment of {price['amount']}{currency} for {label}."


class AncillaryCatalogueAgent(BaseStageAgent):
    stage = CheckInStage.ANCILLARY_SELECTION
    allowed_tools = (ANCILLARY_TOOL,)

    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        computed = last_tool_result(result.steps, ANCILLARY_TOOL)
        if record is None and computed is None:
            return None
        record = {**(computed or {}), **(record or {})}
        if record.get("hasAncillaryForPurchase") is True:
            keys = service_keys(record)
            record["status"] = StageStatus.USER_INPUT_REQUIRED.value
            record["continue"] = False
            if is_user_confirming(goal):
                details = record.get("serviceDetails")
                if not isinstance(details, dict):
                    details = (computed or {}).get("serviceDetails")
                record["userMessage"] = build_payment_prompt(first_price(details, keys))
                record["paymentRequested"] = True
            else:
                labels = [FRIENDLY_SERVICE_NAMES.get(key, key) for key in keys]
                record["userMessage"] = build_purchase_prompt(labels)
        elif record.get("error"):
            record["status"] = StageStatus.FAILED.value
            record["continue"] = False
        elif record.get("status") is None:
            record["status"] = StageStatus.SUCCESS.value
            record["continue"] = True
        return record
