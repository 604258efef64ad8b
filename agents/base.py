from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

from agents.agent_loop import NO_FINAL_ANSWER, AgentLoop, tool_result_text
from agents.state_helper import extract_final_object, to_stage_response
from compliance.audit_logger import AuditLogger
from models.errors import ConfigurationError
from models.schemas import (
    AgentDecisionLog,
    AgentRunOptions,
    AgentRunResult,
    AgentStep,
    CheckInStage,
    SessionState,
    StageError,
    StageResponse,
    StageStatus,
    ToolCallRecord,
)
from settings import SETTINGS, Settings

logger = logging.getLogger(__name__)


def last_tool_result(steps: Sequence[AgentStep], tool_name: str) -> Optional[Dict[str, Any]]:
    """Parsed JSON payload of the most recent successful call to ``tool_name``."""
    for step in reversed(list(steps)):
        if step.action != "call-tool" or step.tool != tool_name or not isinstance(step.result, dict):
            continue
        if step.result.get("isError"):
            continue
        text = tool_result_text(step.result)
        if not text:
            continue
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def tool_call_records(steps: Iterable[AgentStep]) -> List[ToolCallRecord]:
    records: List[ToolCallRecord] = []
    for step in steps:
        if step.action != "call-tool":
            continue
        result = step.result if isinstance(step.result, dict) else {}
        summary = tool_result_text(result) or step.error or ""
        records.append(
            ToolCallRecord(
                tool_name=step.tool or "",
                args=step.args if isinstance(step.args, dict) else {},
                result_summary=summary[:200],
                success=not step.error and not result.get("isError"),
            )
        )
    return records


class BaseStageAgent(ABC):
    """One check-in stage: a prompt set, an allow-list of tools and a post-processing rule.

    Subclasses set ``stage`` and ``allowed_tools`` and implement ``post_process``.
    """

    stage: CheckInStage
    allowed_tools: Sequence[str] = ()
    enforce_tool_use: bool = True
    tool_choice: Optional[str] = "auto"

    def __init__(
        self,
        loop: AgentLoop,
        settings: Settings | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self.settings = settings or SETTINGS
        self.loop = loop
        self.prompts = self.settings.prompts_for(self.stage.value)
        self.name = f"{self.stage.value.lower()}_agent"
        self.audit_logger = audit_logger or AuditLogger(self.settings.audit_log_path)

    def preprocess_goal(self, goal: str, state: SessionState | None) -> str:
        return goal

    def system_prompt(self, state: SessionState | None) -> str:
        return self.prompts.system_prompt

    def build_options(self, state: SessionState | None) -> AgentRunOptions:
        return AgentRunOptions(
            allowed_tools=list(self.allowed_tools),
            system_prompt=self.system_prompt(state),
            continue_prompt=self.prompts.continue_prompt,
            computed_notes_template=self.prompts.computed_notes_template,
            max_model_calls=self.prompts.max_model_calls,
            enforce_tool_use=self.enforce_tool_use,
            tool_use_prompt=self.prompts.tool_use_prompt or None,
            tool_choice=self.tool_choice,
            max_tool_enforcement_retries=self.prompts.max_tool_enforcement_retries,
            max_invalid_tool_args=self.prompts.max_invalid_tool_args,
        )

    @abstractmethod
    def post_process(
        self,
        record: Optional[Dict[str, Any]],
        result: AgentRunResult,
        goal: str,
        state: SessionState | None,
    ) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def handle_stage(self, session_id: str, goal: str, state: SessionState | None = None) -> StageResponse:
        start = time.perf_counter()
        try:
            result = await self.loop.run(self.preprocess_goal(goal, state), self.build_options(state))
            # the budget sentinel is not a model answer
            final = None if result.final == NO_FINAL_ANSWER else result.final
            record = self.post_process(extract_final_object(final), result, goal, state)
            response = to_stage_response(session_id, self.stage, record, result.steps)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("stage_agent_failed", extra={"stage": self.stage.value, "session_id": session_id})
            response = StageResponse(
                session_id=session_id,
                stage=self.stage,
                status=StageStatus.FAILED,
                continue_=False,
                error=StageError(code="stage_agent_error", message=str(exc)),
                user_message=str(exc) or "Stage processing failed.",
            )
            result = AgentRunResult(goal=goal)
        duration_ms = int((time.perf_counter() - start) * 1000)
        self.build_decision_log(
            session_id,
            action=f"handle_{self.stage.value.lower()}",
            reasoning=response.user_message or "",
            tool_calls=tool_call_records(result.steps),
            duration_ms=duration_ms,
            outcome=response.status.value,
        )
        logger.info(
            "stage_handled",
            extra={
                "stage": self.stage.value,
                "session_id": session_id,
                "status": response.status.value,
                "duration_ms": duration_ms,
            },
        )
        return response

    def build_decision_log(
        self,
        session_id: str,
        action: str,
        reasoning: str,
        tool_calls: Iterable[ToolCallRecord] | None = None,
        duration_ms: int = 0,
        outcome: str = "ok",
    ) -> AgentDecisionLog:
        record = AgentDecisionLog(
            session_id=session_id,
            agent=self.name,
            stage=self.stage.value,
            action=action,
            reasoning=reasoning,
            tool_calls=list(tool_calls or []),
            duration_ms=duration_ms,
            outcome=outcome,
        )
        self.audit_logger.log_decision(record)
        return record
