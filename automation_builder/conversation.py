"""Conversation state, retention and token accounting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import math
from typing import Any, Dict, List, Optional

from .errors import ToolQuotaExceeded


ROLES = ("system", "user", "assistant", "tool")

RECENT_WINDOW = 6
COMPACT_WINDOW = 4
FULL_HISTORY_LIMIT = 10


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass(frozen=True)
class Message:
    role: str
    content: str = ""
    tool_call: Optional[ToolCall] = None
    tool_name: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if self.content is None:
            object.__setattr__(self, "content", "")

    def to_input(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ContextStrategy(str, Enum):
    AUTO = "auto"
    FULL = "full"
    RECENT = "recent"
    COMPACT = "compact"


@dataclass
class ToolCallQuota:
    """Per-turn tool call budget.

    The counter only ever goes back to zero when a different turn id is
    observed in ``begin_turn``.
    """

    max_calls: int = 5
    calls_this_turn: int = 0
    turn_id: Optional[str] = None

    def begin_turn(self, turn_id: str) -> None:
        if turn_id != self.turn_id:
            self.turn_id = turn_id
            self.calls_this_turn = 0

    def can_make_call(self) -> bool:
        return self.calls_this_turn < self.max_calls

    @property
    def remaining(self) -> int:
        return max(self.max_calls - self.calls_this_turn, 0)

    def record_call(self) -> None:
        if not self.can_make_call():
            raise ToolQuotaExceeded(self.max_calls)
        self.calls_this_turn += 1


@dataclass
class ConversationState:
    max_history_length: int = 20
    max_tokens_per_request: int = 8000
    chars_per_token: int = 4
    messages: List[Message] = field(default_factory=list)
    estimated_token_count: int = 0

    def __post_init__(self) -> None:
        if self.max_history_length < 2:
            raise ValueError("max_history_length must be at least 2")
        if self.chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")

    @property
    def system_message(self) -> Optional[Message]:
        for message in self.messages:
            if message.role == "system":
                return message
        return None

    def append(self, message: Message) -> None:
        if message.role == "system":
            # Only one system message is kept; a new one takes its place at the front.
            self.messages = [m for m in self.messages if m.role != "system"]
            self.messages.insert(0, message)
        else:
            self.messages.append(message)
        self._evict(self.max_history_length)
        self.estimated_token_count += self.estimate_tokens(message.content)

    def estimate_tokens(self, content: str) -> int:
        return math.ceil(len(content) / self.chars_per_token)

    def is_approaching_limit(self) -> bool:
        return self.estimated_token_count > self.max_tokens_per_request * 0.8

    def trim(self) -> None:
        self._evict(self.max_history_length)
        if self.is_approaching_limit():
            system = self.system_message
            rest = [m for m in self.messages if m.role != "system"]
            kept = rest[-COMPACT_WINDOW:]
            self.messages = ([system] if system else []) + kept

    def reset(self) -> None:
        self.messages = []
        self.estimated_token_count = 0

    def reset_token_count(self) -> None:
        self.estimated_token_count = 0

    def context_window(self, strategy: ContextStrategy = ContextStrategy.AUTO) -> List[Message]:
        strategy = ContextStrategy(strategy)
        conversational = [m for m in self.messages if m.role in ("user", "assistant")]
        if strategy == ContextStrategy.AUTO:
            if self.is_approaching_limit():
                strategy = ContextStrategy.COMPACT
            elif len(conversational) <= FULL_HISTORY_LIMIT:
                strategy = ContextStrategy.FULL
            else:
                strategy = ContextStrategy.RECENT
        if strategy == ContextStrategy.RECENT:
            conversational = conversational[-RECENT_WINDOW:]
        elif strategy == ContextStrategy.COMPACT:
            conversational = conversational[-COMPACT_WINDOW:]
        system = self.system_message
        return ([system] if system else []) + conversational

    def history(self) -> List[Message]:
        return list(self.messages)

    def token_usage(self) -> Dict[str, int]:
        return {
            "current": self.estimated_token_count,
            "max_per_request": self.max_tokens_per_request,
            "remaining": self.max_tokens_per_request - self.estimated_token_count,
        }

    def stats(self) -> Dict[str, object]:
        return {
            "total_messages": len(self.messages),
            "user_messages": sum(1 for m in self.messages if m.role == "user"),
            "assistant_messages": sum(1 for m in self.messages if m.role == "assistant"),
            "tool_calls": sum(1 for m in self.messages if m.tool_call is not None),
            "token_usage": self.token_usage(),
            "is_approaching_limit": self.is_approaching_limit(),
        }

    def _evict(self, bound: int) -> None:
        # Tool-role audit entries go before any user or assistant message.
        while len(self.messages) > bound:
            index = next((i for i, m in enumerate(self.messages) if m.role == "tool"), None)
            if index is None:
                index = next((i for i, m in enumerate(self.messages) if m.role != "system"), None)
            if index is None:
                return
            del self.messages[index]
