"""Scripted evaluation of the builder against a live backend."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class EvalCase:
    prompt: str
    expected_tools: Sequence[str] = ()
    # Multi-step builds must touch every listed capability, not just one.
    require_all: bool = False
    require_tool: bool = True


def default_test_suite() -> List[EvalCase]:
    return [
        EvalCase("What triggers are available?", ("get_available_triggers",)),
        EvalCase("Which actions can an automation perform?", ("get_available_actions",)),
        EvalCase("What can I check on when a user joins?", ("get_conditions_for_trigger", "get_available_variables")),
        EvalCase("Who are the admins in my organization?", ("get_reference_data",)),
        EvalCase("Show me the delay steps I can use", ("get_available_workflow_steps",)),
        EvalCase(
            "Send a welcome email when a member joins, then wait a day and assign the onboarding template",
            ("get_available_triggers", "get_available_actions", "validate_automation_data"),
            require_all=True,
        ),
        EvalCase("ambiguous: make my automations better", require_tool=False),
    ]


def extract_tool_events_from_turn(turn_events: Iterable[Dict[str, object]]) -> Tuple[List[Dict[str, object]], List[str]]:
    tool_results: List[Dict[str, object]] = []
    tool_errors: List[str] = []
    for event in turn_events:
        if event.get("type") != "tool_result":
            continue
        payload = event.get("payload")
        if not isinstance(payload, dict):
            continue
        tool_results.append({"tool": event.get("tool"), **payload})
        error = payload.get("error")
        if isinstance(error, str):
            tool_errors.append(f"{event.get('tool')}: {error}")
    return tool_results, tool_errors


def evaluate_case(
    case: EvalCase,
    tool_results: Sequence[Dict[str, object]],
    tool_errors: Sequence[str],
    tool_call_count: int,
    failure: Optional[BaseException] = None,
) -> Dict[str, object]:
    """Score one turn.

    ``failure`` is the exception that ended the turn, if any; it is reported
    by type so quota and loop stops are told apart from remote failures.
    """
    used = [r["tool"] for r in tool_results if isinstance(r.get("tool"), str)]
    missing = [tool for tool in case.expected_tools if tool not in used]
    if not case.expected_tools:
        expected_ok = True
    elif case.require_all:
        expected_ok = not missing
    else:
        expected_ok = len(missing) < len(case.expected_tools)
    degraded = sorted({str(r["tool"]) for r in tool_results if r.get("degraded")})
    used_ok = bool(used) or not case.require_tool

    return {
        "prompt": case.prompt,
        "used_tools": used,
        "missing_tools": missing if not expected_ok else [],
        "tool_calls": tool_call_count,
        "degraded_tools": degraded,
        "tool_errors": list(tool_errors),
        "failure": type(failure).__name__ if failure is not None else None,
        "failure_detail": str(failure) if failure is not None else None,
        "passed": expected_ok and used_ok and not tool_errors and failure is None,
    }


def format_summary(results: Sequence[Dict[str, object]]) -> str:
    passed = sum(1 for r in results if r.get("passed"))
    stops = Counter(r["failure"] for r in results if r.get("failure"))
    header = f"Summary: {passed}/{len(results)} passing"
    if stops:
        header += " (" + ", ".join(f"{count} {kind}" for kind, count in sorted(stops.items())) + ")"

    lines = [header]
    for idx, result in enumerate(results, start=1):
        status = "PASS" if result.get("passed") else "FAIL"
        line = f"{idx:02d}. {status} | calls={result.get('tool_calls', 0)} | {result.get('prompt')}"
        notes = []
        if result.get("failure"):
            notes.append(f"{result['failure']}: {result.get('failure_detail')}")
        if result.get("missing_tools"):
            notes.append("missing " + ", ".join(result["missing_tools"]))
        if result.get("degraded_tools"):
            notes.append("degraded " + ", ".join(result["degraded_tools"]))
        elif result.get("tool_errors"):
            notes.append(f"{len(result['tool_errors'])} tool error(s)")
        if notes:
            line += " | " + "; ".join(notes)
        lines.append(line)
    return "\n".join(lines)
