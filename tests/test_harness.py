"""Eval harness and CLI wiring tests"""
from automation_builder.cli import _build_parser, _format_trace_event, build_registry
from automation_builder.config import load_config
from automation_builder.errors import ToolLoopDetected
from automation_builder.errors import ToolLoopDetected
from automation_builder.harness import (
    EvalCase,
    default_test_suite,
    evaluate_case,
    extract_tool_events_from_turn,
    format_summary,
)


def test_default_suite_only_names_catalog_tools():
    """Every scripted case names real catalog capabilities"""
    from automation_builder.tool_registry import ALLOWED_TOOLS

    for case in default_test_suite():
        for tool in case.expected_tools or []:
            assert tool in ALLOWED_TOOLS


def test_extract_tool_events_collects_errors():
    """Tool results and their errors are pulled out of turn events"""
    events = [
        {"type": "llm_output", "variant": "ToolCallRequest"},
        {"type": "tool_result", "tool": "get_available_triggers", "payload": {"triggers": []}},
        {"type": "tool_result", "tool": "get_available_actions", "payload": {"actions": [], "error": "Server error"}},
    ]
    results, errors = extract_tool_events_from_turn(events)

    assert [r["tool"] for r in results] == ["get_available_triggers", "get_available_actions"]
    assert errors == ["get_available_actions: Server error"]


def test_evaluate_and_summarize():
    """Typed stop reasons show up in the result and the summary header"""
    case = EvalCase("What triggers are available?", ("get_available_triggers",))
    passed = evaluate_case(case, [{"tool": "get_available_triggers"}], [], 1)
    stopped = evaluate_case(case, [], [], 0, failure=ToolLoopDetected("get_available_triggers", ("a", "b")))

    assert passed["passed"] is True
    assert stopped["passed"] is False
    assert stopped["failure"] == "ToolLoopDetected"

    lines = format_summary([passed, stopped]).splitlines()
    assert lines[0] == "Summary: 1/2 passing (1 ToolLoopDetected)"
    assert "ToolLoopDetected" in lines[2]


def test_multi_step_case_requires_every_expected_tool():
    """A build request only passes once all its capabilities were used"""
    case = EvalCase("build it", ("get_available_triggers", "validate_automation_data"), require_all=True)

    partial = evaluate_case(case, [{"tool": "get_available_triggers"}], [], 1)
    complete = evaluate_case(case, [{"tool": "get_available_triggers"}, {"tool": "validate_automation_data"}], [], 2)

    assert partial["passed"] is False
    assert partial["missing_tools"] == ["validate_automation_data"]
    assert complete["passed"] is True


def test_any_expected_tool_is_enough_by_default():
    """Single-purpose questions accept any of the listed capabilities"""
    case = EvalCase("conditions?", ("get_conditions_for_trigger", "get_available_variables"))
    assert evaluate_case(case, [{"tool": "get_available_variables"}], [], 1)["passed"] is True


def test_degraded_results_are_reported():
    """Fallback results fail the case and are named in the summary"""
    case = EvalCase("admins?", ("get_reference_data",))
    results = [{"tool": "get_reference_data", "items": [], "error": "Server error", "degraded": True}]
    result = evaluate_case(case, results, ["get_reference_data: Server error"], 1)

    assert result["passed"] is False
    assert result["degraded_tools"] == ["get_reference_data"]
    assert "degraded get_reference_data" in format_summary([result])


def test_open_question_case_does_not_require_tools():
    """Ambiguous prompts may be answered without any tool"""
    case = EvalCase("ambiguous", require_tool=False)
    assert evaluate_case(case, [], [], 0)["passed"] is True


def test_trace_event_formatting():
    """Trace events are reduced to compact JSONL records"""
    assert _format_trace_event({"type": "tool_result", "tool": "x", "payload": {"error": "boom"}}) == {
        "event": "tool_result",
        "tool": "x",
        "ok": False,
    }
    assert _format_trace_event({"type": "final_text", "content": "hello"}) == {"event": "final_text", "chars": 5}


def test_parser_accepts_subcommands():
    """Eval flags parse onto the namespace"""
    args = _build_parser().parse_args(["eval", "--max-tool-calls", "3", "--verbose"])
    assert args.command == "eval"
    assert args.max_tool_calls == 3
    assert args.verbose is True


def test_build_registry_wires_orchestrator(tmp_path, monkeypatch):
    """The registry hands out ready orchestrators and stores the token"""
    monkeypatch.delenv("OPTIX_TOKEN", raising=False)
    monkeypatch.delenv("BUILDER_MAX_TOOL_CALLS", raising=False)
    config = load_config(
        openai_api_key="sk-test",
        optix_token="o" * 24,
        optix_organization_id="org_1",
        credentials_file=str(tmp_path / "credentials.json"),
    )
    registry = build_registry(config)
    orch = registry.open_session().orchestrator

    assert orch.is_initialized
    assert orch.quota.max_calls == 5
    assert (tmp_path / "credentials.json").exists()
