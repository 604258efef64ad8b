from __future__ import annotations

import json
import os
from threading import Lock
from typing import Any, Dict

from models.schemas import AgentDecisionLog, utc_now_iso
from settings import SETTINGS


class AuditLogger:
    """Append-only JSONL trail of stage decisions and stage transitions.

    An empty path turns the logger into a no-op.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = SETTINGS.audit_log_path if path is None else path
        self._lock = Lock()
        if self.path:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)

    @property
    def enabled(self) -> bool:
        return bool(self.path)

    def log_decision(self, record: AgentDecisionLog) -> None:
        self.log_json({"kind": "decision", **record.model_dump(mode="json")})

    def log_transition(self, session_id: str, from_stage: str, to_stage: str, reason: str) -> None:
        self.log_json(
            {
                "kind": "transition",
                "timestamp": utc_now_iso(),
                "session_id": session_id,
                "from_stage": from_stage,
                "to_stage": to_stage,
                "reason": reason,
            }
        )

    def log_json(self, payload: Dict[str, Any]) -> None:
        if not self.path:
            return
        line = json.dumps(payload, ensure_ascii=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
