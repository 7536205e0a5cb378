"""Response normalizer tests"""
import json

from automation_builder.normalizer import (
    CanonicalReply,
    PlainText,
    StructuredReply,
    ToolCallRequest,
    Unparseable,
    classify,
    to_canonical_reply,
)

from conftest import text_response, tool_response


def test_structured_reply_passes_through_unchanged():
    """Structured JSON text becomes a reply as is"""
    response = classify(text_response("X"))
    assert isinstance(response, StructuredReply)
    assert to_canonical_reply(response) == CanonicalReply(display_text="X", ui_suggestions=())
    assert to_canonical_reply(response).to_dict() == {"display_text": "X", "ui_suggestions": []}


def test_structured_reply_inside_code_fence():
    """Fenced JSON is unwrapped before parsing"""
    body = "```json\n" + json.dumps({"display_text": "Fenced", "ui_suggestions": []}) + "\n```"
    reply = to_canonical_reply(classify({"output_text": body}))
    assert reply.display_text == "Fenced"


def test_broken_json_keeps_raw_text():
    """Unparseable JSON falls back to the raw text"""
    raw = '{"display_text": "Almost there", "ui_suggestions": ['
    response = classify({"output": [{"type": "message", "content": [{"type": "output_text", "text": raw}]}]})
    assert isinstance(response, PlainText)
    assert to_canonical_reply(response) == CanonicalReply(raw)


def test_function_calls_from_responses_api():
    """Responses API function calls become tool call requests"""
    response = classify(
        tool_response(
            "get_available_workflow_steps",
            "get_reference_data",
            arguments={
                "get_available_workflow_steps": {"step_type": "delay"},
                "get_reference_data": {"data_type": "admins"},
            },
        )
    )
    assert isinstance(response, ToolCallRequest)
    assert [c.name for c in response.calls] == ["get_available_workflow_steps", "get_reference_data"]
    assert response.calls[0].arguments == {"step_type": "delay"}
    assert response.calls[0].call_id == "call_0"
    assert to_canonical_reply(response) is None


def test_structured_text_wins_over_function_calls():
    """A structured reply takes precedence over tool calls"""
    payload = tool_response("get_available_triggers")
    payload["output"].insert(0, text_response("Done")["output"][0])
    assert isinstance(classify(payload), StructuredReply)


def test_chat_completion_tool_calls_and_legacy_function_call():
    """Older tool call shapes are understood too"""
    chat = {
        "choices": [
            {
                "message": {
                    "content": None,
                    "tool_calls": [
                        {"id": "tc_1", "function": {"name": "get_available_actions", "arguments": "{}"}},
                    ],
                }
            }
        ]
    }
    response = classify(chat)
    assert isinstance(response, ToolCallRequest)
    assert response.calls[0].call_id == "tc_1"

    legacy = {"choices": [{"message": {"function_call": {"name": "get_available_triggers", "arguments": "not json"}}}]}
    response = classify(legacy)
    assert isinstance(response, ToolCallRequest)
    assert response.calls[0].arguments == {}


def test_plain_text_across_legacy_shapes():
    """Plain text is found in every known payload shape"""
    assert classify({"choices": [{"message": {"content": "Hello there"}}]}) == PlainText("Hello there")
    assert classify({"message": {"content": " Hi "}}) == PlainText("Hi")
    assert classify({"text": "plain"}) == PlainText("plain")
    assert classify({"content": "content field"}) == PlainText("content field")


def test_json_without_display_text_is_treated_as_text():
    """JSON without display_text is kept as plain text"""
    body = json.dumps({"answer": "42"})
    assert classify({"output_text": body}) == PlainText(body)


def test_unparseable_shapes():
    """Payloads with nothing usable are unparseable"""
    assert isinstance(classify({"output": []}), Unparseable)
    assert isinstance(classify("just a string"), Unparseable)
    assert isinstance(classify({"output_text": "   "}), Unparseable)
    assert to_canonical_reply(classify({})) is None


def test_empty_structured_text_has_no_reply():
    """An empty display_text yields no reply"""
    assert to_canonical_reply(classify(text_response("  "))) is None


def test_suggestions_are_coerced_and_capped():
    """Suggestions are cleaned up and capped at three"""
    suggestions = [
        {"id": "a", "label": "Use it", "payload": "use", "variant": "primary"},
        {"label": "No id", "variant": "loud"},
        {"id": "c", "label": "", "payload": "dropped"},
        "not a dict",
        {"id": "d", "label": "Delete", "payload": {"action": "delete"}, "variant": "danger"},
        {"id": "e", "label": "Too many"},
    ]
    reply = to_canonical_reply(classify(text_response("Pick one", suggestions)))

    assert len(reply.ui_suggestions) == 3
    first, second, third = reply.ui_suggestions
    assert first.to_dict() == {"id": "a", "label": "Use it", "payload": "use", "variant": "primary"}
    assert second.id == "suggestion_2"
    assert second.payload == "No id"
    assert second.variant == "secondary"
    assert third.variant == "danger"
    assert json.loads(third.payload) == {"action": "delete"}
