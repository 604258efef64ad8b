from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List

import httpx

from models.errors import ChatModelError, ConfigurationError
from settings import SETTINGS, Settings

logger = logging.getLogger(__name__)


class ChatModel(ABC):
    """Responses-API shaped chat model: one request in, one response out."""

    @abstractmethod
    async def create_response(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    def extract_tool_calls(self, response: Dict[str, Any]) -> List[Dict[str, Any]]:
        calls: List[Dict[str, Any]] = []
        for item in response.get("output") or []:
            if isinstance(item, dict) and item.get("type") == "function_call":
                calls.append(
                    {
                        "name": item.get("name"),
                        "arguments": item.get("arguments"),
                        "call_id": item.get("call_id"),
                    }
                )
        return calls

    def extract_output_text(self, response: Dict[str, Any]) -> str | None:
        text = response.get("output_text")
        if isinstance(text, str) and text:
            return text
        for item in response.get("output") or []:
            if not isinstance(item, dict) or item.get("type") != "message":
                continue
            for part in item.get("content") or []:
                if isinstance(part, dict) and part.get("type") == "output_text":
                    return part.get("text")
            return None
        return None


class OpenAIResponsesChatModel(ChatModel):
    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings or SETTINGS
        self._transport = transport

    async def create_response(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.settings.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        if not self.settings.openai_model:
            raise ConfigurationError("OPENAI_MODEL is not set")
        body = {"model": self.settings.openai_model, **{k: v for k, v in payload.items() if v is not None}}
        async with httpx.AsyncClient(timeout=self.settings.llm_timeout_seconds, transport=self._transport) as client:
            resp = await client.post(
                f"{self.settings.openai_base_url.rstrip('/')}/responses",
                headers={"Authorization": f"Bearer {self.settings.openai_api_key}"},
                json=body,
            )
            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.warning("chat_model_http_error", extra={"status_code": resp.status_code})
                raise ChatModelError(f"Chat model request failed with HTTP {resp.status_code}") from exc
            data = resp.json()
        if not isinstance(data, dict):
            raise ChatModelError("Chat model returned a non-object payload")
        return data
