from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import httpx

from tools.connections import LocalTool

logger = logging.getLogger(__name__)


@dataclass
class RestRequest:
    method: str
    url: str
    json: Any = None
    params: Dict[str, Any] | None = None


@dataclass
class RestToolSpec:
    """Data describing one backend endpoint exposed as a tool."""

    name: str
    description: str
    path: str
    method: str = "GET"
    input_schema: Dict[str, Any] = field(default_factory=dict)
    request_builder: Optional[Callable[[str, Dict[str, Any]], RestRequest]] = None
    result_builder: Optional[Callable[[Any], Dict[str, Any]]] = None
    mock_fixture: Optional[Callable[[Dict[str, Any]], Any]] = None


def to_tool_response(data: Any) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(data, indent=2, ensure_ascii=True)}]}


def to_tool_error(message: str) -> Dict[str, Any]:
    return {"isError": True, "content": [{"type": "text", "text": message}]}


def normalize_header_overrides(headers: Any) -> Dict[str, str]:
    if not isinstance(headers, dict):
        return {}
    return {str(key): value for key, value in headers.items() if isinstance(value, str) and value}


class RestToolAdapter:
    """Turns a RestToolSpec into an MCP-style tool backed by httpx or a mock fixture."""

    def __init__(
        self,
        spec: RestToolSpec,
        base_url: str,
        default_headers: Dict[str, str] | None = None,
        timeout_seconds: float = 55.0,
        mock_enabled: bool = True,
        mock_delay_ms: int = 0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.spec = spec
        self.base_url = base_url.rstrip("/")
        self.default_headers = dict(default_headers or {})
        self.timeout_seconds = timeout_seconds
        self.mock_enabled = mock_enabled
        self.mock_delay_ms = mock_delay_ms
        self._transport = transport

    def use_mock(self, args: Dict[str, Any]) -> bool:
        override = args.get("useMock")
        if isinstance(override, bool):
            return override
        return self.mock_enabled

    def build_request(self, args: Dict[str, Any]) -> RestRequest:
        url = args.get("url") if isinstance(args.get("url"), str) else f"{self.base_url}{self.spec.path}"
        if self.spec.request_builder is not None:
            return self.spec.request_builder(url, args)
        raw_body = args.get("rawBody")
        if isinstance(raw_body, str) and raw_body:
            return RestRequest(method="POST", url=url, json=json.loads(raw_body))
        return RestRequest(method=self.spec.method, url=url)

    async def __call__(self, args: Dict[str, Any]) -> Dict[str, Any]:
        started = time.perf_counter()
        raw_body = args.get("rawBody")
        if isinstance(raw_body, str) and raw_body:
            try:
                json.loads(raw_body)
            except json.JSONDecodeError:
                return to_tool_error("rawBody must be valid JSON string")
        try:
            if self.use_mock(args) and self.spec.mock_fixture is not None:
                if self.mock_delay_ms > 0:
                    await asyncio.sleep(self.mock_delay_ms / 1000)
                payload = self.spec.mock_fixture(args)
                source = "mock"
            else:
                payload = await self._fetch(args)
                source = "backend"
        except httpx.HTTPError as exc:
            logger.warning("rest_tool_failed", extra={"tool": self.spec.name, "error": repr(exc)})
            return to_tool_error(str(exc) or f"{self.spec.name} failed")
        result = self.spec.result_builder(payload) if self.spec.result_builder else payload
        logger.info(
            "rest_tool_called",
            extra={"tool": self.spec.name, "source": source, "duration_ms": int((time.perf_counter() - started) * 1000)},
        )
        return to_tool_response(result)

    async def _fetch(self, args: Dict[str, Any]) -> Any:
        request = self.build_request(args)
        headers = {**self.default_headers, **normalize_header_overrides(args.get("headers"))}
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
            resp = await client.request(
                request.method,
                request.url,
                headers=headers,
                json=request.json,
                params=request.params,
            )
            resp.raise_for_status()
            try:
                return resp.json()
            except json.JSONDecodeError as exc:
                raise httpx.DecodingError(f"{self.spec.name} returned invalid JSON", request=resp.request) from exc

    def as_local_tool(self) -> LocalTool:
        return LocalTool(
            name=self.spec.name,
            description=self.spec.description,
            handler=self,
            input_schema=self.spec.input_schema,
        )
