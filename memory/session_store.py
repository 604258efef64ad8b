from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from threading import Lock
from typing import Any, Dict, Optional

from pydantic import ValidationError

from models.schemas import SessionState
from settings import SETTINGS

logger = logging.getLogger(__name__)


class StateStore(ABC):
    """Key-value persistence of one SessionState per conversation."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[SessionState]:
        raise NotImplementedError

    @abstractmethod
    async def set(self, session_id: str, state: SessionState, ttl_seconds: int | None = None) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def session_lock(self, session_id: str) -> asyncio.Lock:
        raise NotImplementedError


class InMemoryStateStore(StateStore):
    """Dict-backed store with optional per-entry expiry and JSON-file persistence.

    Entries are held as their JSON form, so every ``get`` hands out a fresh
    SessionState and callers cannot mutate stored state without ``set``.
    """

    def __init__(self, path: str | None = None, default_ttl_seconds: int | None = None) -> None:
        self.path = SETTINGS.session_store_path if path is None else path
        self.default_ttl_seconds = default_ttl_seconds
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._expires: Dict[str, float] = {}
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._lock = Lock()
        self._load()

    def _load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, json.JSONDecodeError):
            logger.warning("session_store_load_failed", extra={"path": self.path})
            return
        for key, raw in (payload.get("sessions") or {}).items():
            try:
                SessionState.model_validate(raw)
            except ValidationError:
                continue
            self._entries[str(key)] = raw

    def _persist(self) -> None:
        if not self.path:
            return
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump({"sessions": self._entries}, fh, ensure_ascii=True)
        os.replace(tmp, self.path)

    def _expire_if_needed(self, session_id: str) -> bool:
        deadline = self._expires.get(session_id)
        if deadline is not None and time.monotonic() >= deadline:
            self._entries.pop(session_id, None)
            self._expires.pop(session_id, None)
            return True
        return False

    async def get(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            if self._expire_if_needed(session_id):
                self._persist()
            raw = self._entries.get(session_id)
        if raw is None:
            return None
        return SessionState.model_validate(raw)

    async def set(self, session_id: str, state: SessionState, ttl_seconds: int | None = None) -> None:
        raw = state.model_dump(mode="json", by_alias=True)
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        with self._lock:
            self._entries[session_id] = raw
            if ttl is not None and ttl > 0:
                self._expires[session_id] = time.monotonic() + ttl
            else:
                self._expires.pop(session_id, None)
            self._persist()

    async def delete(self, session_id: str) -> None:
        with self._lock:
            self._entries.pop(session_id, None)
            self._expires.pop(session_id, None)
            self._session_locks.pop(session_id, None)
            self._persist()

    def session_lock(self, session_id: str) -> asyncio.Lock:
        with self._lock:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = asyncio.Lock()
                self._session_locks[session_id] = lock
            return lock
