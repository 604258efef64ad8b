from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from agents.chat_model import OpenAIResponsesChatModel
from models.errors import ChatModelError, ConfigurationError

from conftest import Script


def test_posts_to_responses_endpoint(test_settings):
    async def _run():
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=Script.final({"status": "SUCCESS"}))

        model = OpenAIResponsesChatModel(test_settings, transport=httpx.MockTransport(handler))
        response = await model.create_response({"input": [], "previous_response_id": None, "instructions": "sys"})
        assert model.extract_output_text(response) == '{"status": "SUCCESS"}'
        request = seen[0]
        assert str(request.url) == "https://llm.test/v1/responses"
        assert request.headers["Authorization"] == "Bearer test-key"
        body = json.loads(request.content)
        assert body == {"model": "test-model", "input": [], "instructions": "sys"}

    asyncio.run(_run())


def test_http_error_is_wrapped(test_settings):
    async def _run():
        model = OpenAIResponsesChatModel(test_settings, transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        with pytest.raises(ChatModelError):
            await model.create_response({"input": []})

    asyncio.run(_run())


def test_missing_api_key(settings_factory):
    async def _run():
        model = OpenAIResponsesChatModel(settings_factory(openai_api_key=""))
        with pytest.raises(ConfigurationError):
            await model.create_response({"input": []})

    asyncio.run(_run())


def test_extract_tool_calls_and_message_text(script):
    model = OpenAIResponsesChatModel()
    calls = model.extract_tool_calls(script.tool_call("ssci_boarding_pass", {"journeyId": "J1"}, "c9"))
    assert calls == [{"name": "ssci_boarding_pass", "arguments": '{"journeyId": "J1"}', "call_id": "c9"}]
    assert model.extract_output_text(script.message("hello")) == "hello"
    assert model.extract_output_text({"output": []}) is None
