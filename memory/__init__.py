from .session_store import InMemoryStateStore, StateStore

__all__ = ["InMemoryStateStore", "StateStore"]
