from .errors import (
    ChatModelError,
    CheckInError,
    ConfigurationError,
    ToolInvocationError,
    ToolNameCollisionError,
    ToolNotFoundError,
)
from .schemas import (
    AgentDecisionLog,
    AgentRunOptions,
    AgentRunResult,
    AgentStep,
    CheckInStage,
    RunRequest,
    SessionData,
    SessionState,
    StageResponse,
    StageStatus,
    ToolCallRecord,
)

__all__ = [
    "AgentDecisionLog",
    "AgentRunOptions",
    "AgentRunResult",
    "AgentStep",
    "ChatModelError",
    "CheckInError",
    "CheckInStage",
    "ConfigurationError",
    "RunRequest",
    "SessionData",
    "SessionState",
    "StageResponse",
    "StageStatus",
    "ToolCallRecord",
    "ToolInvocationError",
    "ToolNameCollisionError",
    "ToolNotFoundError",
]
