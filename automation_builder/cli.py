"""Command-line entrypoint for the automation builder."""

from __future__ import annotations

import argparse
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import anyio

from .config import BuilderConfig, load_config
from .credentials import (
    CREDENTIALS_FILE,
    ChainedCredentialProvider,
    Credentials,
    FileCredentialStore,
    StaticCredentialProvider,
    validate_token_format,
)
from .errors import AutomationBuilderError
from .executor import CapabilityExecutor
from .harness import default_test_suite, evaluate_case, extract_tool_events_from_turn, format_summary
from .llm_client import OpenAIClient
from .optix_client import OptixClient, OptixHttpConfig
from .orchestrator import DialogueOrchestrator, RuntimeConfig
from .sessions import SessionRegistry


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--openai-url", default=None)
    parser.add_argument("--openai-model", default=None)
    parser.add_argument("--openai-timeout-s", type=int, default=None)
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument("--optix-url", default=None)
    parser.add_argument("--optix-token", default=None)
    parser.add_argument("--organization-id", default=None)
    parser.add_argument("--max-tool-calls", type=int, default=None)
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or WARNING).")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="automation-builder",
        description="Conversational builder for Optix workflow automations",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    chat_parser = subparsers.add_parser("chat", help="Start a chat REPL")
    _add_common_arguments(chat_parser)
    chat_parser.add_argument(
        "--trace-out",
        default=None,
        help="Write JSONL trace events to a file during chat.",
    )

    eval_parser = subparsers.add_parser("eval", help="Run the scripted eval suite")
    _add_common_arguments(eval_parser)
    eval_parser.add_argument("--verbose", action="store_true")
    eval_parser.add_argument(
        "--trace-out",
        default=None,
        help="Write JSONL trace events to a file instead of stdout.",
    )
    eval_parser.add_argument("--trace", action="store_true", help="Emit JSONL trace events.")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=(args.log_level or os.getenv("LOG_LEVEL", "WARNING")).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if args.command == "chat":
        return anyio.run(_run_chat, args)
    if args.command == "eval":
        return anyio.run(_run_eval, args)
    return 0


def _load_from_args(args: argparse.Namespace) -> BuilderConfig:
    return load_config(
        openai_url=args.openai_url,
        openai_model=args.openai_model,
        openai_timeout_s=args.openai_timeout_s,
        temperature=args.temperature,
        optix_api_url=args.optix_url,
        optix_token=args.optix_token,
        optix_organization_id=args.organization_id,
        max_tool_calls=args.max_tool_calls,
    )


def build_registry(config: BuilderConfig) -> SessionRegistry:
    store = FileCredentialStore(Path(config.credentials_file) if config.credentials_file else CREDENTIALS_FILE)
    if validate_token_format(config.optix_token):
        store.save(Credentials(token=config.optix_token, organization_id=config.optix_organization_id))
    credentials = ChainedCredentialProvider(
        StaticCredentialProvider(config.optix_token, config.optix_organization_id),
        store,
    )
    optix = OptixClient(OptixHttpConfig(url=config.optix_api_url, timeout_s=config.optix_timeout_s), credentials)
    executor = CapabilityExecutor(optix)
    llm = OpenAIClient(config.openai_url, timeout_s=config.openai_timeout_s)
    runtime = RuntimeConfig(
        model=config.openai_model,
        temperature=config.temperature,
        max_output_tokens=config.max_output_tokens,
        prompt_id=config.openai_prompt_id,
        max_tool_calls=config.max_tool_calls,
        max_messages=config.max_messages,
        max_tokens_per_request=config.max_tokens_per_request,
        chars_per_token=config.chars_per_token,
    )

    def factory() -> DialogueOrchestrator:
        return DialogueOrchestrator(runtime, llm, executor, api_key=config.openai_api_key)

    return SessionRegistry(factory)


async def _run_chat(args: argparse.Namespace) -> int:
    config = _load_from_args(args)
    registry = build_registry(config)
    session = registry.open_session(organization_id=config.optix_organization_id)
    orch = session.orchestrator

    trace_sink = _open_trace_sink(args.trace_out) if args.trace_out else None
    run_id = _new_run_id() if trace_sink else None
    if trace_sink:
        _emit_trace_event({"event": "run_start", "run_id": run_id, "session_id": session.session_id}, trace_sink)

    await _repl(orch, trace_sink=trace_sink, run_id=run_id)

    if trace_sink:
        _emit_trace_event({"event": "run_end", "run_id": run_id}, trace_sink)
        trace_sink.close()
    registry.close_session(session.session_id)
    return 0


async def _run_eval(args: argparse.Namespace) -> int:
    config = _load_from_args(args)
    registry = build_registry(config)

    results = []
    trace_sink = _open_trace_sink(args.trace_out) if args.trace_out else None
    tracing = args.trace or trace_sink is not None
    run_id = _new_run_id() if tracing else None
    if tracing:
        _emit_trace_event({"event": "run_start", "run_id": run_id}, trace_sink)

    for idx, case in enumerate(default_test_suite(), start=1):
        # Fresh session per case so history from one case cannot leak into the next.
        session = registry.open_session(organization_id=config.optix_organization_id)
        orch = session.orchestrator
        failure = None
        try:
            await orch.send_message(case.prompt)
        except AutomationBuilderError as e:
            failure = e
        tool_results, tool_errors = extract_tool_events_from_turn(orch.turn_events)
        result = evaluate_case(case, tool_results, tool_errors, orch.quota.calls_this_turn, failure)
        results.append(result)
        if args.verbose:
            print(json.dumps(result, indent=2, ensure_ascii=True))
        if tracing:
            _emit_turn_trace(idx, case.prompt, orch, trace_sink, run_id)
            _emit_trace_event(
                {"event": "case_end", "case_index": idx, "result": result, "run_id": run_id},
                trace_sink,
            )
        registry.close_session(session.session_id)

    if tracing:
        _emit_trace_event({"event": "run_end", "run_id": run_id}, trace_sink)
    if trace_sink:
        trace_sink.close()
    print(format_summary(results))
    return 0 if all(r.get("passed") for r in results) else 1


def _open_trace_sink(path: str):
    return open(path, "a", encoding="utf-8")


def _emit_trace_event(event: dict, sink) -> None:
    event = dict(event)
    event["ts"] = _utc_now_iso()
    payload = json.dumps(event, ensure_ascii=True, default=str)
    if sink:
        sink.write(payload + "\n")
        sink.flush()
    else:
        print(payload)


def _emit_turn_trace(turn_index: int, prompt: str, orch: DialogueOrchestrator, sink, run_id: str | None) -> None:
    base = {"turn_index": turn_index, "prompt": prompt, "run_id": run_id}
    for event in orch.turn_events:
        _emit_trace_event({**base, **_format_trace_event(event)}, sink)


def _format_trace_event(event: dict) -> dict:
    event_type = event.get("type")
    if event_type == "llm_output":
        return {
            "event": "llm_output",
            "variant": event.get("variant"),
            "duration_ms": event.get("duration_ms"),
        }
    if event_type == "final_text":
        content = event.get("content") or ""
        return {"event": "final_text", "chars": len(content)}
    if event_type == "tool_call":
        return {
            "event": "tool_call",
            "tool": event.get("tool"),
            "duration_ms": event.get("duration_ms"),
        }
    if event_type == "tool_result":
        payload = event.get("payload", {})
        error = payload.get("error") if isinstance(payload, dict) else None
        return {"event": "tool_result", "tool": event.get("tool"), "ok": error is None}
    return {"event": event_type}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


async def _repl(orch: DialogueOrchestrator, trace_sink=None, run_id: str | None = None) -> None:
    print("Optix Automation Builder (type 'exit' to quit, 'reset' to start over)")
    turn_index = 0
    while True:
        user_text = await anyio.to_thread.run_sync(lambda: input("> ").strip())
        if not user_text:
            continue
        if user_text.lower() in {"exit", "quit"}:
            break
        if user_text.lower() == "reset":
            orch.clear_history()
            print("Conversation cleared.")
            continue
        turn_index += 1
        try:
            reply = await orch.send_message(user_text)
        except AutomationBuilderError as e:
            print(e.user_message)
            continue
        finally:
            if trace_sink:
                _emit_turn_trace(turn_index, user_text, orch, trace_sink, run_id)
        print(reply.display_text)
        for number, suggestion in enumerate(reply.ui_suggestions, start=1):
            print(f"  [{number}] {suggestion.label} ({suggestion.variant})")
