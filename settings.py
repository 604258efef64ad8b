from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from models.errors import ConfigurationError


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


@dataclass(frozen=True)
class StagePromptConfig:
    env_prefix: str
    system_prompt: str = ""
    tool_use_prompt: str = ""
    continue_prompt: str = "Continue. Use tools if needed."
    computed_notes_template: str = ""
    max_model_calls: int = 6
    max_tool_enforcement_retries: int = 3
    max_invalid_tool_args: int = 5
    requires_tool_use_prompt: bool = True

    def missing_keys(self) -> List[str]:
        missing: List[str] = []
        if not self.system_prompt:
            missing.append(f"{self.env_prefix}_SYSTEM_PROMPT")
        if self.requires_tool_use_prompt and not self.tool_use_prompt:
            missing.append(f"{self.env_prefix}_TOOL_USE_PROMPT")
        if not self.computed_notes_template:
            missing.append(f"{self.env_prefix}_COMPUTED_NOTES_TEMPLATE")
        return missing


# stage value -> (env prefix, requires tool-use prompt, continue prompt, max calls, enforce retries, invalid args)
STAGE_PROMPT_DEFAULTS: Dict[str, Tuple[str, bool, str, int, int, int]] = {
    "BEGIN_CONVERSATION": ("BEGIN_CONVERSATION", False, "Continue. Return JSON only.", 3, 0, 0),
    "TRIP_IDENTIFICATION": ("TRIP_IDENTIFICATION", True, "Continue. Use tools if needed.", 6, 3, 5),
    "JOURNEY_IDENTIFICATION": ("JOURNEY_IDENTIFICATION_ORCHESTRATOR", True, "Continue. Use tools if needed.", 6, 3, 5),
    "VALIDATE_PROCESS_CHECKIN": ("VALIDATE_PROCESS_CHECKIN_ORCHESTRATOR", True, "Continue. Use tools if needed.", 6, 3, 5),
    "CHECKIN_ACCEPTANCE": ("CHECKIN_ACCEPTANCE_ORCHESTRATOR", True, "Continue. Use tools if needed.", 6, 3, 5),
    "BOARDING_PASS": ("BOARDING_PASS_ORCHESTRATOR", True, "Continue. Use tools if needed.", 6, 3, 5),
    "REGULATORY_DETAILS": ("REGULATORY_DETAILS_ORCHESTRATOR", True, "Continue. Use tools if needed.", 6, 3, 5),
    "ANCILLARY_SELECTION": ("ANCILLARY_CATALOGUE_ORCHESTRATOR", True, "Continue. Use tools if needed.", 6, 3, 5),
}


def load_stage_prompts() -> Dict[str, StagePromptConfig]:
    prompts: Dict[str, StagePromptConfig] = {}
    for stage, (prefix, needs_tool_prompt, continue_default, calls, retries, invalid) in STAGE_PROMPT_DEFAULTS.items():
        prompts[stage] = StagePromptConfig(
            env_prefix=prefix,
            system_prompt=os.getenv(f"{prefix}_SYSTEM_PROMPT", ""),
            tool_use_prompt=os.getenv(f"{prefix}_TOOL_USE_PROMPT", ""),
            continue_prompt=os.getenv(f"{prefix}_CONTINUE_PROMPT") or continue_default,
            computed_notes_template=os.getenv(f"{prefix}_COMPUTED_NOTES_TEMPLATE", ""),
            max_model_calls=_int(f"{prefix}_MAX_CALLS", calls),
            max_tool_enforcement_retries=_int(f"{prefix}_TOOL_ENFORCE_RETRIES", retries),
            max_invalid_tool_args=_int(f"{prefix}_MAX_INVALID_TOOL_ARGS", invalid),
            requires_tool_use_prompt=needs_tool_prompt,
        )
    return prompts


@dataclass(frozen=True)
class McpServerConfig:
    url: str
    name: str
    tool_name_prefix: str | None = None
    client_name: str | None = None
    client_version: str | None = None


def resolve_mcp_servers(raw_list: str | None = None, single: str | None = None) -> List[McpServerConfig]:
    raw_list = os.getenv("MCP_SERVER_URLS", "") if raw_list is None else raw_list
    single = os.getenv("MCP_SERVER_URL", "") if single is None else single
    if raw_list.strip():
        try:
            parsed = json.loads(raw_list)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, list):
            servers = [
                McpServerConfig(
                    url=str(item["url"]),
                    name=str(item.get("name") or f"mcp-{index + 1}"),
                    tool_name_prefix=item.get("toolNamePrefix"),
                    client_name=item.get("clientName"),
                    client_version=item.get("clientVersion"),
                )
                for index, item in enumerate(parsed)
                if isinstance(item, dict) and isinstance(item.get("url"), str)
            ]
            if servers:
                return servers
        else:
            urls = [entry.strip() for entry in raw_list.split(",") if entry.strip()]
            if urls:
                return [McpServerConfig(url=url, name=f"mcp-{index + 1}") for index, url in enumerate(urls)]
    if single.strip():
        return [McpServerConfig(url=single.strip(), name="mcp-default")]
    return []


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    llm_timeout_seconds: int = _int("LLM_TIMEOUT_SECONDS", 60)

    mcp_client_name: str = os.getenv("MCP_CLIENT_NAME", "checkin-orchestrator")
    mcp_client_version: str = os.getenv("MCP_CLIENT_VERSION", "1.0.0")
    tool_collision_strategy: str = os.getenv("AI_AGENT_TOOL_COLLISION_STRATEGY", "namespace")
    tool_namespace_separator: str = os.getenv("AI_AGENT_TOOL_NAMESPACE_SEPARATOR", "::")
    tool_namespace_key: str = os.getenv("AI_AGENT_TOOL_NAMESPACE_KEY", "name")
    mcp_servers: List[McpServerConfig] = field(default_factory=resolve_mcp_servers)
    local_tools_enabled: bool = _bool("LOCAL_CHECKIN_TOOLS_ENABLED", True)

    ssci_base_url: str = os.getenv("SSCI_BASE_URL", "https://test-digital.etihad.com/ada-services/ssci")
    backend_timeout_seconds: float = _float("BACKEND_TIMEOUT_SECONDS", 55.0)
    mock_backends: bool = _bool("MOCK_SSCI", True)
    mock_delay_ms: int = _int("MOCK_SSCI_DELAY_MS", 0)
    mock_pnr: str = os.getenv("MOCK_PNR", "7MHQTY")

    session_store_path: str = os.getenv("SESSION_STORE_PATH", "")
    session_ttl_seconds: int | None = _optional_int("SESSION_TTL_SECONDS")
    audit_log_path: str = os.getenv("AUDIT_LOG_PATH", "./data/audit.log.jsonl")
    rate_limit_per_minute: int = _int("RATE_LIMIT_PER_MINUTE", 60)
    orchestrator_max_transitions: int = _int("ORCHESTRATOR_MAX_TRANSITIONS", 8)

    stage_prompts: Dict[str, StagePromptConfig] = field(default_factory=load_stage_prompts)

    debug: bool = _bool("DEBUG", False)

    def prompts_for(self, stage: str) -> StagePromptConfig:
        config = self.stage_prompts.get(stage)
        if config is None:
            raise ConfigurationError(f"No prompt configuration for stage {stage}")
        return config

    def missing_keys(self) -> List[str]:
        missing: List[str] = []
        for config in self.stage_prompts.values():
            missing.extend(config.missing_keys())
        if not self.openai_model:
            missing.append("OPENAI_MODEL")
        if self.tool_collision_strategy not in {"namespace", "skip", "error"}:
            missing.append("AI_AGENT_TOOL_COLLISION_STRATEGY (namespace|skip|error)")
        if self.tool_namespace_key not in {"name", "url"}:
            missing.append("AI_AGENT_TOOL_NAMESPACE_KEY (name|url)")
        return missing

    def validate(self) -> "Settings":
        missing = self.missing_keys()
        if missing:
            raise ConfigurationError(f"Missing or invalid configuration: {', '.join(missing)}")
        return self


SETTINGS = Settings()
