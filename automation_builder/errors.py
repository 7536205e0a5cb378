"""Typed failures raised by the automation builder."""

from __future__ import annotations

from typing import Optional, Sequence


class AutomationBuilderError(Exception):
    """Base class for every failure surfaced to a caller.

    ``user_message`` is safe to show in the UI; ``str(exc)`` carries the
    technical detail for logs.
    """

    user_message = "Something went wrong while building your automation. Please try again."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        if user_message:
            self.user_message = user_message


class NotInitialized(AutomationBuilderError):
    user_message = "The assistant is not connected yet. Check the API key configuration and reload."


class UnknownCapability(AutomationBuilderError):
    user_message = "The assistant asked for an operation that does not exist."

    def __init__(self, name: str):
        super().__init__(f"Unknown capability: {name!r}")
        self.name = name


class RemoteFailure(AutomationBuilderError):
    user_message = "I couldn't reach the service right now. Please try again in a moment."

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        source: str = "backend",
        user_message: Optional[str] = None,
    ):
        super().__init__(message, user_message=user_message)
        self.status = status
        self.source = source


class ToolQuotaExceeded(AutomationBuilderError):
    user_message = (
        "That request needed more lookups than I can do in one message. "
        "Try asking for one part of the automation at a time."
    )

    def __init__(self, limit: int, pending: Sequence[str] = ()):
        pending_names = ", ".join(pending) or "none"
        super().__init__(f"Tool call quota of {limit} exhausted; not dispatched: {pending_names}")
        self.limit = limit
        self.pending = tuple(pending)


class ToolLoopDetected(AutomationBuilderError):
    user_message = (
        "I got stuck repeating the same lookup. "
        "Could you narrow the request down a little?"
    )

    def __init__(self, name: str, call_stack: Sequence[str]):
        super().__init__(f"Capability {name!r} requested repeatedly: {' -> '.join(call_stack)}")
        self.name = name
        self.call_stack = tuple(call_stack)


class EmptyBackendResponse(AutomationBuilderError):
    user_message = "I didn't get an answer back. Please rephrase and try again."


class Cancelled(AutomationBuilderError):
    user_message = "The request was cancelled."
