from __future__ import annotations

import json
from dataclasses import replace
from typing import Any, Dict, List

import pytest

from agents.chat_model import ChatModel
from agents.orchestrator import CheckInOrchestrator
from memory.session_store import InMemoryStateStore
from settings import SETTINGS, STAGE_PROMPT_DEFAULTS, Settings, StagePromptConfig
from tools.checkin_tools import build_tool_gateway


class ScriptedChatModel(ChatModel):
    """Replays canned Responses-API payloads in order and records every request."""

    def __init__(self, responses: List[Dict[str, Any]] | None = None) -> None:
        self.responses = list(responses or [])
        self.requests: List[Dict[str, Any]] = []

    def queue(self, *responses: Dict[str, Any]) -> None:
        self.responses.extend(responses)

    async def create_response(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.requests.append(payload)
        if not self.responses:
            raise AssertionError(f"unexpected chat model call: {payload.get('input')}")
        return self.responses.pop(0)


class Script:
    _counter = 0

    @classmethod
    def _next_id(cls) -> str:
        cls._counter += 1
        return f"resp_{cls._counter}"

    @classmethod
    def tool_call(cls, name: str, args: Dict[str, Any] | str | None = None, call_id: str = "call_1") -> Dict[str, Any]:
        return cls.tool_calls((name, args, call_id))

    @classmethod
    def tool_calls(cls, *calls) -> Dict[str, Any]:
        output = []
        for name, args, call_id in calls:
            arguments = args if isinstance(args, str) else json.dumps(args or {})
            output.append({"type": "function_call", "name": name, "arguments": arguments, "call_id": call_id})
        return {"id": cls._next_id(), "output": output}

    @classmethod
    def final(cls, payload: Dict[str, Any] | str) -> Dict[str, Any]:
        text = payload if isinstance(payload, str) else json.dumps(payload)
        return {"id": cls._next_id(), "output_text": text}

    @classmethod
    def message(cls, text: str) -> Dict[str, Any]:
        return {
            "id": cls._next_id(),
            "output": [{"type": "message", "content": [{"type": "output_text", "text": text}]}],
        }


def make_test_settings(**overrides: Any) -> Settings:
    prompts = {}
    for stage, (prefix, needs_tool_prompt, continue_default, calls, retries, invalid) in STAGE_PROMPT_DEFAULTS.items():
        prompts[stage] = StagePromptConfig(
            env_prefix=prefix,
            system_prompt=f"You handle {stage}. Return JSON only.",
            tool_use_prompt="Use one of these tools for: {goal}. Tools: {tools}",
            continue_prompt=continue_default,
            computed_notes_template="Computed results:\n{notes}",
            max_model_calls=calls,
            max_tool_enforcement_retries=retries,
            max_invalid_tool_args=invalid,
            requires_tool_use_prompt=needs_tool_prompt,
        )
    values = {
        "openai_api_key": "test-key",
        "openai_model": "test-model",
        "openai_base_url": "https://llm.test/v1",
        "mcp_servers": [],
        "local_tools_enabled": True,
        "mock_backends": True,
        "mock_delay_ms": 0,
        "session_store_path": "",
        "session_ttl_seconds": None,
        "audit_log_path": "",
        "rate_limit_per_minute": 0,
        "stage_prompts": prompts,
    }
    values.update(overrides)
    return replace(SETTINGS, **values)


@pytest.fixture
def script():
    return Script


@pytest.fixture
def test_settings() -> Settings:
    return make_test_settings()


@pytest.fixture
def settings_factory():
    return make_test_settings


@pytest.fixture
def chat_model() -> ScriptedChatModel:
    return ScriptedChatModel()


@pytest.fixture
def orchestrator(test_settings, chat_model) -> CheckInOrchestrator:
    return CheckInOrchestrator(
        settings=test_settings,
        store=InMemoryStateStore(path=""),
        gateway=build_tool_gateway(test_settings),
        chat_model=chat_model,
    )
