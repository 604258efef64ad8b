from __future__ import annotations

from dataclasses import replace

import pytest

from models.errors import ConfigurationError
from settings import StagePromptConfig, resolve_mcp_servers

from conftest import make_test_settings


def test_complete_settings_validate():
    settings = make_test_settings()
    assert settings.validate() is settings


def test_missing_prompts_are_listed_by_env_key():
    settings = make_test_settings()
    prompts = dict(settings.stage_prompts)
    prompts["BOARDING_PASS"] = StagePromptConfig(env_prefix="BOARDING_PASS_ORCHESTRATOR")
    broken = replace(settings, stage_prompts=prompts)
    with pytest.raises(ConfigurationError) as excinfo:
        broken.validate()
    message = str(excinfo.value)
    assert "BOARDING_PASS_ORCHESTRATOR_SYSTEM_PROMPT" in message
    assert "BOARDING_PASS_ORCHESTRATOR_TOOL_USE_PROMPT" in message
    assert "BOARDING_PASS_ORCHESTRATOR_COMPUTED_NOTES_TEMPLATE" in message


def test_begin_conversation_needs_no_tool_prompt():
    config = StagePromptConfig(
        env_prefix="BEGIN_CONVERSATION",
        system_prompt="collect identity",
        computed_notes_template="{notes}",
        requires_tool_use_prompt=False,
    )
    assert config.missing_keys() == []


def test_bad_collision_strategy_is_rejected():
    with pytest.raises(ConfigurationError):
        make_test_settings(tool_collision_strategy="merge").validate()


def test_unknown_stage_prompt_lookup():
    with pytest.raises(ConfigurationError):
        make_test_settings().prompts_for("JOURNEY_SELECTION")


def test_mcp_servers_from_json_list_and_csv():
    servers = resolve_mcp_servers('[{"url": "https://a.test/mcp", "toolNamePrefix": "a_"}, {"name": "b"}]', "")
    assert [(s.name, s.url, s.tool_name_prefix) for s in servers] == [("mcp-1", "https://a.test/mcp", "a_")]
    csv = resolve_mcp_servers("https://a.test/mcp, https://b.test/mcp", "")
    assert [s.name for s in csv] == ["mcp-1", "mcp-2"]
    assert resolve_mcp_servers("", "https://single.test/mcp")[0].name == "mcp-default"
    assert resolve_mcp_servers("", "") == []
