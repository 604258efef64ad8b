from __future__ import annotations


class CheckInError(Exception):
    """Base class for errors raised by the check-in orchestrator."""


class ConfigurationError(CheckInError):
    """A required configuration key is missing or invalid."""


class ToolNotFoundError(CheckInError):
    def __init__(self, name: str):
        super().__init__(f"Tool not found: {name}")
        self.name = name


class ToolNameCollisionError(CheckInError):
    def __init__(self, name: str):
        super().__init__(f"Tool name collision for {name}")
        self.name = name


class ToolInvocationError(CheckInError):
    """A tool connection failed to deliver a result (transport or protocol failure)."""


class ChatModelError(CheckInError):
    """The chat model endpoint returned an error or an unreadable payload."""
