"""Pytest configuration and fixtures"""

import json

import pytest

from automation_builder.orchestrator import DialogueOrchestrator, RuntimeConfig


@pytest.fixture
def anyio_backend():
    return "asyncio"


def text_response(display_text, suggestions=None):
    """Responses API payload carrying a structured reply."""
    body = json.dumps({"display_text": display_text, "ui_suggestions": suggestions or []})
    return {
        "output": [
            {
                "type": "message",
                "role": "assistant",
                "content": [{"type": "output_text", "text": body}],
            }
        ]
    }


def tool_response(*names, arguments=None):
    """Responses API payload requesting one function call per name."""
    return {
        "output": [
            {
                "type": "function_call",
                "call_id": f"call_{i}",
                "name": name,
                "arguments": json.dumps((arguments or {}).get(name, {})),
            }
            for i, name in enumerate(names)
        ]
    }


class FakeBackend:
    """Scripted stand-in for the OpenAI client; records every payload."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.payloads = []

    def create_response(self, payload, api_key):
        self.payloads.append(payload)
        if not self.responses:
            raise AssertionError("backend called more often than scripted")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeExecutor:
    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    async def execute(self, name, args=None):
        self.calls.append((name, args))
        return self.results.get(name, {"ok": True, "tool": name})


class FakeGraphQL:
    """Returns canned ``data`` by GraphQL operation name."""

    def __init__(self, responses=None, organization_id="org_1"):
        self.responses = responses or {}
        self.organization_id = organization_id
        self.queries = []

    async def resolve_organization_id(self):
        return self.organization_id

    async def execute(self, query, variables=None):
        self.queries.append((query, variables))
        for operation, response in self.responses.items():
            if operation in query:
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"unexpected query: {query[:60]}")


@pytest.fixture
def runtime_config():
    return RuntimeConfig(model="gpt-4o", max_tool_calls=5, max_messages=20)


@pytest.fixture
def make_orchestrator(runtime_config):
    def _make(responses, results=None, config=None):
        backend = FakeBackend(responses)
        executor = FakeExecutor(results)
        orch = DialogueOrchestrator(config or runtime_config, backend, executor, api_key="sk-test")
        return orch, backend, executor

    return _make
