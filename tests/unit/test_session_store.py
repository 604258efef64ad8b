from __future__ import annotations

import asyncio
import json

import pytest

from memory.session_store import InMemoryStateStore, StateStore
from models.schemas import CheckInStage, SessionState


def test_get_set_delete():
    async def _run():
        store = InMemoryStateStore(path="")
        assert await store.get("s-1") is None
        await store.set("s-1", SessionState(session_id="s-1", current_stage=CheckInStage.TRIP_IDENTIFICATION))
        stored = await store.get("s-1")
        assert stored.current_stage == CheckInStage.TRIP_IDENTIFICATION
        await store.delete("s-1")
        assert await store.get("s-1") is None
        # deleting twice is harmless
        await store.delete("s-1")

    asyncio.run(_run())


def test_get_returns_a_copy():
    async def _run():
        store = InMemoryStateStore(path="")
        await store.set("s-1", SessionState(session_id="s-1"))
        first = await store.get("s-1")
        first.data.last_name = "Changed"
        assert (await store.get("s-1")).data.last_name is None

    asyncio.run(_run())


def test_ttl_expiry(monkeypatch):
    async def _run():
        clock = [1000.0]
        monkeypatch.setattr("memory.session_store.time.monotonic", lambda: clock[0])
        store = InMemoryStateStore(path="", default_ttl_seconds=60)
        await store.set("s-1", SessionState(session_id="s-1"))
        await store.set("s-2", SessionState(session_id="s-2"), ttl_seconds=600)
        clock[0] += 61
        assert await store.get("s-1") is None
        assert await store.get("s-2") is not None

    asyncio.run(_run())


def test_persists_to_json_file(tmp_path):
    async def _run():
        path = str(tmp_path / "sessions.json")
        store = InMemoryStateStore(path=path)
        state = SessionState(session_id="s-1")
        state.data.booking_reference = "7MHQTY"
        await store.set("s-1", state)
        with open(path, encoding="utf-8") as fh:
            raw = json.load(fh)
        assert raw["sessions"]["s-1"]["data"]["bookingReference"] == "7MHQTY"
        reloaded = InMemoryStateStore(path=path)
        assert (await reloaded.get("s-1")).data.booking_reference == "7MHQTY"

    asyncio.run(_run())


def test_corrupt_file_is_ignored(tmp_path):
    path = tmp_path / "sessions.json"
    path.write_text("{not json", encoding="utf-8")

    async def _run():
        store = InMemoryStateStore(path=str(path))
        assert await store.get("anything") is None

    asyncio.run(_run())


def test_session_lock_is_shared_per_session():
    store = InMemoryStateStore(path="")
    assert store.session_lock("a") is store.session_lock("a")
    assert store.session_lock("a") is not store.session_lock("b")


def test_store_without_session_lock_cannot_be_built():
    class NoLockStore(StateStore):
        async def get(self, session_id):
            return None

        async def set(self, session_id, state, ttl_seconds=None):
            return None

        async def delete(self, session_id):
            return None

    with pytest.raises(TypeError):
        NoLockStore()
