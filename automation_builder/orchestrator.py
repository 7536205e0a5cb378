"""Dialogue orchestration: one user turn from input to canonical reply."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import logging
import time
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple
import uuid

import anyio

from .conversation import ConversationState, Message, ToolCall, ToolCallQuota
from .errors import Cancelled, EmptyBackendResponse, NotInitialized, ToolLoopDetected, ToolQuotaExceeded
from .normalizer import (
    REPLY_FORMAT,
    BackendResponse,
    CanonicalReply,
    ToolCallRequest,
    classify,
    to_canonical_reply,
)
from .tool_registry import TOOL_DEFINITIONS, ToolDefinition

logger = logging.getLogger("automation_builder")


SYSTEM_PROMPT = """You are an AI assistant that helps Optix admins create automations through natural language conversation.

Your role is to:
1. Understand the user's automation requirements
2. Guide them through the automation creation process step by step
3. Ask clarifying questions when requirements are ambiguous
4. Use the available tools to look up triggers, conditions, actions and reference data
5. Validate automation data before committing it

Key guidelines:
- Ask for clarification if the request is unclear
- Suggest best practices, e.g. adding a condition after a delay
- Break complex automations into manageable steps
- Be conversational and helpful, not technical
- Never describe which tools or functions you used; answer with the result
- Reply with display_text and at most 3 ui_suggestions"""

NARRATION_INSTRUCTION = (
    "Answer the user directly in plain language. Do not mention tools, functions, "
    "lookups or API calls, and do not describe what you executed."
)

NARRATION_PREFIXES = (
    "i called",
    "i executed",
    "i ran",
    "i invoked",
    "i used the",
    "i have called",
    "i've called",
    "calling ",
    "executing ",
)

# A capability may appear at most this many times in one turn's call chain.
MAX_REPEATS_PER_TURN = 2


class TurnPhase(str, Enum):
    IDLE = "idle"
    AWAITING_BACKEND = "awaiting_backend"
    EXECUTING_TOOLS = "executing_tools"


@dataclass(frozen=True)
class RuntimeConfig:
    model: str
    temperature: float = 0.7
    max_output_tokens: int = 4000
    prompt_id: Optional[str] = None
    max_tool_calls: int = 5
    max_messages: int = 20
    max_tokens_per_request: int = 8000
    chars_per_token: int = 4


class BackendClient(Protocol):
    def create_response(self, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        ...


class Executor(Protocol):
    async def execute(self, name: str, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...


class DialogueOrchestrator:
    """Drives conversation turns against the backend and the capability executor.

    One instance owns one conversation. Turns run strictly sequentially;
    every network call is a cancellation point (see ``cancel``).
    """

    def __init__(
        self,
        config: RuntimeConfig,
        llm_client: BackendClient,
        executor: Executor,
        api_key: Optional[str] = None,
        tools: Iterable[ToolDefinition] = TOOL_DEFINITIONS,
    ) -> None:
        self.config = config
        self.llm_client = llm_client
        self.executor = executor
        self.tools: Tuple[ToolDefinition, ...] = tuple(tools)
        self.conversation = ConversationState(
            max_history_length=config.max_messages,
            max_tokens_per_request=config.max_tokens_per_request,
            chars_per_token=config.chars_per_token,
        )
        self.conversation.append(Message("system", SYSTEM_PROMPT))
        self.quota = ToolCallQuota(max_calls=config.max_tool_calls)
        self.phase = TurnPhase.IDLE
        self.turn_events: List[Dict[str, object]] = []
        self.model = config.model
        self.temperature = config.temperature
        self.max_output_tokens = config.max_output_tokens
        self._api_key: Optional[str] = None
        self._cancel_scope: Optional[anyio.CancelScope] = None
        self._cancel_requested = False
        if api_key:
            self.initialize(api_key)

    def initialize(self, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise NotInitialized("Backend API key is empty")
        self._api_key = api_key.strip()
        logger.info("Dialogue orchestrator initialized")

    @property
    def is_initialized(self) -> bool:
        return self._api_key is not None

    async def send_message(self, user_text: str) -> CanonicalReply:
        if not self._api_key:
            raise NotInitialized("Backend API key not initialized")
        if self.phase != TurnPhase.IDLE:
            raise RuntimeError("A turn is already in progress for this conversation")

        turn_id = uuid.uuid4().hex
        self.quota.begin_turn(turn_id)
        self.turn_events = []
        self._cancel_requested = False

        if self.conversation.is_approaching_limit():
            logger.warning(
                f"Approaching token limit ({self.conversation.estimated_token_count} estimated), trimming history"
            )
            self.conversation.trim()
            self.conversation.reset_token_count()

        self.conversation.append(Message("user", user_text))
        self.phase = TurnPhase.AWAITING_BACKEND
        try:
            reply = await self._run_turn()
        finally:
            self.phase = TurnPhase.IDLE
            self._cancel_scope = None

        self.conversation.append(Message("assistant", reply.display_text))
        self.turn_events.append({"type": "final_text", "content": reply.display_text})
        return reply

    def cancel(self) -> None:
        """Abort the running turn at its current (or next) network call.

        Must be called from the event loop running the turn.
        """
        self._cancel_requested = True
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()

    async def _run_turn(self) -> CanonicalReply:
        call_stack: Tuple[str, ...] = ()
        tool_items: List[Dict[str, Any]] = []

        response = await self._request_backend(tool_items, tools_enabled=True)
        while isinstance(response, ToolCallRequest):
            call_stack, tool_items = await self._dispatch_tools(response.calls, call_stack, tool_items)
            # Follow-ups never offer tools, which forces a user-facing answer.
            response = await self._request_backend(tool_items, tools_enabled=False)

        reply = to_canonical_reply(response)
        if reply is None:
            raise EmptyBackendResponse(f"Backend returned no usable text ({type(response).__name__})")

        if self._narrates_tool_usage(reply.display_text):
            logger.warning("Reply narrates tool usage, retrying once without tools")
            retry = await self._request_backend(tool_items, tools_enabled=False, instruction=NARRATION_INSTRUCTION)
            retried = to_canonical_reply(retry)
            if retried is not None:
                reply = retried
        return reply

    async def _dispatch_tools(
        self,
        calls: Sequence[ToolCall],
        call_stack: Tuple[str, ...],
        tool_items: List[Dict[str, Any]],
    ) -> Tuple[Tuple[str, ...], List[Dict[str, Any]]]:
        self.phase = TurnPhase.EXECUTING_TOOLS
        items = list(tool_items)
        for index, call in enumerate(calls):
            call_stack = call_stack + (call.name,)
            if call_stack.count(call.name) > MAX_REPEATS_PER_TURN:
                logger.error(f"Tool loop detected on {call.name}: {' -> '.join(call_stack)}")
                raise ToolLoopDetected(call.name, call_stack)
            if not self.quota.can_make_call():
                pending = [c.name for c in calls[index:]]
                logger.warning(f"Tool call quota exhausted, not dispatching: {pending}")
                raise ToolQuotaExceeded(self.quota.max_calls, pending)
            self.quota.record_call()

            start_time = time.perf_counter()
            result = await self._guarded(self.executor.execute, call.name, call.arguments)
            tool_ms = (time.perf_counter() - start_time) * 1000.0
            self.turn_events.append(
                {"type": "tool_call", "tool": call.name, "args": call.arguments, "duration_ms": tool_ms}
            )
            self.turn_events.append({"type": "tool_result", "tool": call.name, "payload": result})

            output = json.dumps(result, ensure_ascii=True, default=str)
            self.conversation.append(Message("tool", output, tool_call=call, tool_name=call.name))

            call_id = call.call_id or f"call_{uuid.uuid4().hex[:12]}"
            items.append(
                {
                    "type": "function_call",
                    "call_id": call_id,
                    "name": call.name,
                    "arguments": json.dumps(call.arguments, ensure_ascii=True),
                }
            )
            items.append({"type": "function_call_output", "call_id": call_id, "output": output})
        return call_stack, items

    async def _request_backend(
        self,
        tool_items: List[Dict[str, Any]],
        tools_enabled: bool,
        instruction: Optional[str] = None,
    ) -> BackendResponse:
        payload = self._build_request(tool_items, tools_enabled, instruction)
        self.phase = TurnPhase.AWAITING_BACKEND
        start_time = time.perf_counter()
        raw = await self._guarded(
            anyio.to_thread.run_sync,
            self.llm_client.create_response,
            payload,
            self._api_key,
            abandon_on_cancel=True,
        )
        llm_ms = (time.perf_counter() - start_time) * 1000.0
        response = classify(raw)
        self.turn_events.append(
            {
                "type": "llm_output",
                "variant": type(response).__name__,
                "content": raw,
                "duration_ms": llm_ms,
            }
        )
        return response

    def _build_request(
        self,
        tool_items: List[Dict[str, Any]],
        tools_enabled: bool,
        instruction: Optional[str],
    ) -> Dict[str, Any]:
        input_items: List[Dict[str, Any]] = [m.to_input() for m in self.conversation.context_window()]
        input_items.extend(tool_items)
        if instruction:
            input_items.append({"role": "system", "content": instruction})

        payload: Dict[str, Any] = {
            "model": self.model,
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
            "input": input_items,
            "text": {"format": REPLY_FORMAT},
        }
        if self.config.prompt_id:
            payload["prompt"] = {"id": self.config.prompt_id}
        if tools_enabled and self.quota.can_make_call():
            payload["tools"] = [tool.to_backend() for tool in self.tools]
            payload["tool_choice"] = "auto"
        elif tool_items:
            # Function-call items in the input still need their definitions.
            payload["tools"] = [tool.to_backend() for tool in self.tools]
            payload["tool_choice"] = "none"
        return payload

    async def _guarded(self, func, *args, **kwargs):
        if self._cancel_requested:
            raise Cancelled("Turn cancelled before the next network call")
        with anyio.CancelScope() as scope:
            self._cancel_scope = scope
            try:
                return await func(*args, **kwargs)
            finally:
                self._cancel_scope = None
        raise Cancelled("Turn cancelled while waiting on the network")

    def _narrates_tool_usage(self, text: str) -> bool:
        lowered = text.strip().lower()
        if lowered.startswith(NARRATION_PREFIXES):
            return True
        return any(tool.name in lowered for tool in self.tools)

    def clear_history(self) -> None:
        self.conversation.reset()
        self.conversation.append(Message("system", SYSTEM_PROMPT))
        logger.info("Conversation history and token count cleared")

    def history(self) -> List[Message]:
        return self.conversation.history()

    def token_usage(self) -> Dict[str, int]:
        return self.conversation.token_usage()

    def conversation_stats(self) -> Dict[str, object]:
        return self.conversation.stats()

    def update_config(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
    ) -> None:
        if model:
            self.model = model
        if temperature is not None:
            self.temperature = temperature
        if max_output_tokens:
            self.max_output_tokens = max_output_tokens
        logger.info(f"Backend configuration updated: {self.get_config()}")

    def get_config(self) -> Dict[str, object]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
        }
