from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Sequence

from agents.chat_model import ChatModel
from models.errors import ConfigurationError
from models.schemas import AgentRunOptions, AgentRunResult, AgentStep
from tools.gateway import ToolGateway

logger = logging.getLogger(__name__)

NO_FINAL_ANSWER = {"message": "No final answer returned by model."}
NOTE_MAX_CHARS = 2000


def filter_tools(
    tools: Sequence[Dict[str, Any]],
    allowed: Sequence[str] | None = None,
    blocked: Sequence[str] | None = None,
) -> List[Dict[str, Any]]:
    out = list(tools)
    # an empty allow-list means "no tools", None means "all tools"
    if allowed is not None:
        allowed_set = set(allowed)
        out = [tool for tool in out if tool.get("name") in allowed_set]
    if blocked:
        blocked_set = set(blocked)
        out = [tool for tool in out if tool.get("name") not in blocked_set]
    return out


def truncate_note(value: str, max_chars: int = NOTE_MAX_CHARS) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}…(truncated)"


def tool_result_text(result: Any) -> str | None:
    if not isinstance(result, dict):
        return None
    content = result.get("content")
    if isinstance(content, list) and content and isinstance(content[0], dict):
        text = content[0].get("text")
        if isinstance(text, str):
            return text
    return None


def format_tool_note(name: str, args: Dict[str, Any], result: Any) -> str:
    args_text = json.dumps(args, separators=(",", ":"), ensure_ascii=False)
    result_text = tool_result_text(result)
    if result_text is None:
        result_text = json.dumps(result, separators=(",", ":"), ensure_ascii=False, default=str)
    return f"{name}({args_text}) => {truncate_note(result_text)}"


def _user_message(text: str) -> Dict[str, Any]:
    return {"type": "message", "role": "user", "content": [{"type": "input_text", "text": text}]}


class AgentLoop:
    """Bounded request / tool-call / response cycle for one goal.

    Tool invocation errors are not caught here; they propagate to the
    calling stage agent.
    """

    def __init__(self, gateway: ToolGateway, chat_model: ChatModel) -> None:
        self.gateway = gateway
        self.chat_model = chat_model

    async def run(self, goal: str, options: AgentRunOptions | None = None) -> AgentRunResult:
        options = options or AgentRunOptions()
        if not options.system_prompt:
            raise ConfigurationError("System prompt is not set")
        if options.enforce_tool_use and not options.tool_use_prompt:
            raise ConfigurationError("Tool-use prompt is required when tool use is enforced")

        steps: List[AgentStep] = []
        tools = filter_tools(
            await self.gateway.build_chat_model_tools(),
            options.allowed_tools,
            options.blocked_tools,
        )
        has_tools = bool(tools)
        steps.append(AgentStep(action="list-tools", result=tools))
        tool_list_text = ", ".join(tool["name"] for tool in tools) if tools else "no tools available"

        def tool_choice_for(required: bool) -> str | None:
            if not has_tools:
                return None
            return "required" if required else options.tool_choice

        remaining = options.max_model_calls
        force_tool_use = options.enforce_tool_use
        enforcement_retries = 0
        invalid_args = 0
        notes: List[str] = []
        previous_response_id: str | None = None
        final_text: str | None = None
        stop = False

        while remaining > 0:
            if force_tool_use:
                user_text = (options.tool_use_prompt or "").replace("{goal}", goal).replace("{tools}", tool_list_text)
            elif previous_response_id:
                user_text = options.continue_prompt
            else:
                user_text = goal

            response = await self._create(
                [_user_message(user_text)], tools, tool_choice_for(force_tool_use), previous_response_id, options
            )
            remaining -= 1
            previous_response_id = response.get("id")

            calls = self.chat_model.extract_tool_calls(response)
            if not calls:
                final_text = self.chat_model.extract_output_text(response)
                if options.enforce_tool_use and has_tools:
                    enforcement_retries += 1
                    if enforcement_retries > options.max_tool_enforcement_retries:
                        final_text = final_text or (
                            f"Tool enforcement failed after {options.max_tool_enforcement_retries} retries. "
                            "Check tool configuration."
                        )
                        break
                    force_tool_use = True
                    continue
                break
            force_tool_use = False

            while calls and remaining > 0:
                outputs: List[Dict[str, Any]] = []
                for call in calls:
                    name = str(call.get("name") or "")
                    args = self._parse_args(call, steps)
                    if not isinstance(args, dict):
                        message = "Tool arguments must be a JSON object."
                        steps.append(AgentStep(action="call-tool", tool=name, args=args, error=message))
                        outputs.append(
                            {"type": "function_call_output", "call_id": call.get("call_id"), "output": json.dumps({"error": message})}
                        )
                        invalid_args += 1
                        if invalid_args >= options.max_invalid_tool_args:
                            final_text = (
                                f"Too many invalid tool arguments ({options.max_invalid_tool_args}). "
                                "Check prompt/tool usage."
                            )
                            stop = True
                            break
                        continue

                    result = await self.gateway.call_tool(name, args)
                    steps.append(AgentStep(action="call-tool", tool=name, args=args, result=result))
                    notes.append(format_tool_note(name, args, result))
                    logger.info("agent_tool_called", extra={"tool": name, "is_error": bool(result.get("isError"))})
                    outputs.append(
                        {
                            "type": "function_call_output",
                            "call_id": call.get("call_id"),
                            "output": json.dumps(result, ensure_ascii=False, default=str),
                        }
                    )
                if stop:
                    break

                notes_text = options.computed_notes_template.replace("{notes}", "\n".join(notes)).replace("{goal}", goal)
                response = await self._create(
                    outputs + [_user_message(notes_text)], tools, tool_choice_for(False), previous_response_id, options
                )
                remaining -= 1
                previous_response_id = response.get("id")

                calls = self.chat_model.extract_tool_calls(response)
                if not calls:
                    final_text = self.chat_model.extract_output_text(response)
                    break

            if final_text or stop:
                break

        return AgentRunResult(goal=goal, steps=steps, final=final_text if final_text else dict(NO_FINAL_ANSWER))

    async def _create(
        self,
        input_items: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        tool_choice: str | None,
        previous_response_id: str | None,
        options: AgentRunOptions,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "input": input_items,
            "previous_response_id": previous_response_id,
            "instructions": options.system_prompt,
        }
        if tools:
            payload["tools"] = tools
        if tool_choice:
            payload["tool_choice"] = tool_choice
        return await self.chat_model.create_response(payload)

    @staticmethod
    def _parse_args(call: Dict[str, Any], steps: List[AgentStep]) -> Any:
        raw = call.get("arguments")
        if raw is None or raw == "":
            return {}
        if isinstance(raw, dict):
            return raw
        try:
            return json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            steps.append(AgentStep(action="tool-args-parse-failed", tool=call.get("name"), error=str(exc)))
            return {}
