"""Backend response classification and the canonical reply contract."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Dict, List, Optional, Tuple, Union

from .conversation import ToolCall


MAX_SUGGESTIONS = 3
VARIANTS = ("primary", "secondary", "danger")

REPLY_FORMAT: Dict[str, Any] = {
    "type": "json_schema",
    "name": "automation_builder_reply",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "display_text": {"type": "string"},
            "ui_suggestions": {
                "type": "array",
                "maxItems": MAX_SUGGESTIONS,
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "label": {"type": "string"},
                        "payload": {"type": "string"},
                        "variant": {"type": "string", "enum": list(VARIANTS)},
                    },
                    "required": ["id", "label", "payload", "variant"],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["display_text", "ui_suggestions"],
        "additionalProperties": False,
    },
}


@dataclass(frozen=True)
class Suggestion:
    id: str
    label: str
    payload: str
    variant: str = "secondary"

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "label": self.label, "payload": self.payload, "variant": self.variant}


@dataclass(frozen=True)
class CanonicalReply:
    display_text: str
    ui_suggestions: Tuple[Suggestion, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "display_text": self.display_text,
            "ui_suggestions": [s.to_dict() for s in self.ui_suggestions],
        }


@dataclass(frozen=True)
class StructuredReply:
    reply: CanonicalReply


@dataclass(frozen=True)
class ToolCallRequest:
    calls: Tuple[ToolCall, ...]


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class Unparseable:
    reason: str
    payload: Any = field(default=None, compare=False, repr=False)


BackendResponse = Union[StructuredReply, ToolCallRequest, PlainText, Unparseable]


def classify(payload: Any) -> BackendResponse:
    """Map a raw backend payload onto one known response variant.

    Search order: a JSON reply embedded as text, then function-call
    requests, then any plain text field. First match wins.
    """
    if not isinstance(payload, dict):
        return Unparseable("payload is not an object", payload)

    texts = _candidate_texts(payload)
    for text in texts:
        structured = _parse_structured(text)
        if structured is not None:
            return structured

    calls = _tool_calls(payload)
    if calls:
        return ToolCallRequest(tuple(calls))

    for text in texts:
        if text.strip():
            return PlainText(text.strip())
    return Unparseable("no text or tool calls found", payload)


def to_canonical_reply(response: BackendResponse) -> Optional[CanonicalReply]:
    if isinstance(response, StructuredReply):
        return response.reply if response.reply.display_text.strip() else None
    if isinstance(response, PlainText):
        text = response.text.strip()
        return CanonicalReply(text) if text else None
    if isinstance(response, (ToolCallRequest, Unparseable)):
        return None
    raise TypeError(f"Unknown backend response variant: {type(response).__name__}")


def coerce_reply(data: Dict[str, Any]) -> CanonicalReply:
    text = data.get("display_text")
    if text is None:
        text = ""
    elif not isinstance(text, str):
        text = str(text)
    return CanonicalReply(text.strip(), coerce_suggestions(data.get("ui_suggestions")))


def coerce_suggestions(raw: Any) -> Tuple[Suggestion, ...]:
    if not isinstance(raw, list):
        return ()
    suggestions: List[Suggestion] = []
    for item in raw:
        if len(suggestions) >= MAX_SUGGESTIONS:
            break
        if not isinstance(item, dict):
            continue
        label = item.get("label")
        if not isinstance(label, str) or not label.strip():
            continue
        payload = item.get("payload")
        if payload is None:
            payload = label
        elif not isinstance(payload, str):
            payload = json.dumps(payload, ensure_ascii=True)
        variant = item.get("variant")
        if variant not in VARIANTS:
            variant = "secondary"
        suggestion_id = item.get("id")
        if not isinstance(suggestion_id, str) or not suggestion_id.strip():
            suggestion_id = f"suggestion_{len(suggestions) + 1}"
        suggestions.append(Suggestion(suggestion_id, label.strip(), payload, variant))
    return tuple(suggestions)


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```") and cleaned.endswith("```"):
        cleaned = cleaned.strip("`")
        cleaned = cleaned.strip()
        if cleaned.startswith("json"):
            cleaned = cleaned[4:].strip()
    return cleaned


def _parse_structured(text: str) -> Optional[BackendResponse]:
    cleaned = _strip_fences(text)
    if not cleaned.startswith("{"):
        return None
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        # Never drop user-visible text because the JSON is broken.
        return PlainText(text.strip())
    if not isinstance(data, dict) or "display_text" not in data:
        return None
    return StructuredReply(coerce_reply(data))


def _candidate_texts(payload: Dict[str, Any]) -> List[str]:
    texts: List[str] = []

    output = payload.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict) or item.get("type", "message") != "message":
                continue
            content = item.get("content")
            if isinstance(content, str):
                texts.append(content)
            elif isinstance(content, list):
                parts = [
                    part.get("text")
                    for part in content
                    if isinstance(part, dict) and isinstance(part.get("text"), str)
                ]
                if parts:
                    texts.append("".join(parts))

    if isinstance(payload.get("output_text"), str):
        texts.append(payload["output_text"])

    message = _chat_message(payload)
    if message is not None and isinstance(message.get("content"), str):
        texts.append(message["content"])

    for key in ("text", "content"):
        if isinstance(payload.get(key), str):
            texts.append(payload[key])
    return texts


def _chat_message(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict):
            return message
    message = payload.get("message")
    if isinstance(message, dict):
        return message
    return None


def _tool_calls(payload: Dict[str, Any]) -> List[ToolCall]:
    calls: List[ToolCall] = []

    output = payload.get("output")
    if isinstance(output, list):
        for item in output:
            if isinstance(item, dict) and item.get("type") == "function_call":
                call = _make_call(item.get("name"), item.get("arguments"), item.get("call_id") or item.get("id"))
                if call:
                    calls.append(call)
    if calls:
        return calls

    message = _chat_message(payload)
    if message is None:
        return calls
    tool_calls = message.get("tool_calls")
    if isinstance(tool_calls, list):
        for item in tool_calls:
            if not isinstance(item, dict):
                continue
            function = item.get("function") if isinstance(item.get("function"), dict) else item
            call = _make_call(function.get("name"), function.get("arguments"), item.get("id"))
            if call:
                calls.append(call)
    legacy = message.get("function_call")
    if not calls and isinstance(legacy, dict):
        call = _make_call(legacy.get("name"), legacy.get("arguments"), None)
        if call:
            calls.append(call)
    return calls


def _make_call(name: Any, arguments: Any, call_id: Any) -> Optional[ToolCall]:
    if not isinstance(name, str) or not name.strip():
        return None
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except json.JSONDecodeError:
            arguments = {}
    if not isinstance(arguments, dict):
        arguments = {}
    return ToolCall(name=name.strip(), arguments=arguments, call_id=call_id if isinstance(call_id, str) else None)
