"""HTTP transport tests for the Optix GraphQL client and the OpenAI client"""
import json
import threading
from unittest.mock import Mock

import pytest
import requests

from automation_builder.credentials import StaticCredentialProvider
from automation_builder.errors import RemoteFailure
from automation_builder.llm_client import OpenAIClient
from automation_builder.optix_client import OptixClient, OptixHttpConfig

TOKEN = "t" * 32


def _response(status=200, payload=None, text=None, reason="OK"):
    response = Mock()
    response.status_code = status
    response.reason = reason
    if payload is None:
        response.json.side_effect = json.JSONDecodeError("bad", text or "", 0)
        response.text = text or ""
    else:
        response.json.return_value = payload
        response.text = json.dumps(payload)
    return response


def _optix(response=None, token=TOKEN, side_effect=None):
    session = Mock()
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        session.post.return_value = response
    client = OptixClient(
        OptixHttpConfig(url="https://api.example.test/graphql", timeout_s=7),
        StaticCredentialProvider(token, "org_1"),
        session=session,
    )
    return client, session


def test_graphql_request_sends_bearer_and_returns_data():
    """Requests carry the bearer token and return data"""
    client, session = _optix(_response(payload={"data": {"organization": {"name": "Acme"}}}))

    data = client._execute_sync("query GetOrgIDandName { organization { name } }", {"a": 1})

    assert data == {"organization": {"name": "Acme"}}
    _, kwargs = session.post.call_args
    assert kwargs["headers"]["Authorization"] == f"Bearer {TOKEN}"
    assert kwargs["json"]["variables"] == {"a": 1}
    assert kwargs["timeout"] == 7


@pytest.mark.anyio
async def test_organization_id_resolved_in_worker_thread():
    """Reading credentials for the organization id stays off the event loop"""
    seen = []

    class RecordingProvider(StaticCredentialProvider):
        def get_credentials(self):
            seen.append(threading.get_ident())
            return super().get_credentials()

    client = OptixClient(OptixHttpConfig(), RecordingProvider(TOKEN, "org_1"), session=Mock())

    assert await client.resolve_organization_id() == "org_1"
    assert seen and seen[0] != threading.get_ident()


@pytest.mark.anyio
async def test_graphql_execute_runs_in_worker_thread():
    """The async entry point returns the same data"""
    client, _ = _optix(_response(payload={"data": {"admins": []}}))
    assert await client.execute("query GetAdmins { admins { id } }") == {"admins": []}


@pytest.mark.parametrize(
    "status, fragment",
    [
        (401, "Authentication failed"),
        (403, "Access forbidden"),
        (404, "endpoint not found"),
        (503, "Server error"),
        (429, "status: 429"),
    ],
)
def test_graphql_http_errors(status, fragment):
    """HTTP statuses map to descriptive failures"""
    client, _ = _optix(_response(status=status, payload={}, reason="Nope"))
    with pytest.raises(RemoteFailure) as excinfo:
        client._execute_sync("query X { x }", {})
    assert fragment in str(excinfo.value)
    assert excinfo.value.status == status
    assert excinfo.value.source == "optix"


def test_graphql_errors_are_joined():
    """GraphQL error messages are joined into one failure"""
    client, _ = _optix(_response(payload={"errors": [{"message": "Field x unknown"}, {"message": "Bad y"}]}))
    with pytest.raises(RemoteFailure, match="GraphQL errors: Field x unknown, Bad y"):
        client._execute_sync("query X { x }", {})


def test_graphql_auth_errors_are_flagged():
    """Auth-related GraphQL errors get a 401 status"""
    client, _ = _optix(_response(payload={"errors": [{"message": "Invalid token supplied"}]}))
    with pytest.raises(RemoteFailure, match="Authentication error") as excinfo:
        client._execute_sync("query X { x }", {})
    assert excinfo.value.status == 401


def test_graphql_network_failures():
    """Timeouts and connection errors become remote failures"""
    client, _ = _optix(side_effect=requests.Timeout("slow"))
    with pytest.raises(RemoteFailure, match="timed out"):
        client._execute_sync("query X { x }", {})

    client, _ = _optix(side_effect=requests.ConnectionError("refused"))
    with pytest.raises(RemoteFailure) as excinfo:
        client._execute_sync("query X { x }", {})
    assert "Network error" in excinfo.value.user_message


def test_graphql_non_json_response():
    """A non-JSON body is a remote failure"""
    client, _ = _optix(_response(payload=None, text="<html>"))
    with pytest.raises(RemoteFailure, match="not JSON"):
        client._execute_sync("query X { x }", {})


def test_missing_or_short_token_fails_before_request():
    """Bad tokens fail without sending anything"""
    client, session = _optix(_response(payload={"data": {}}), token="short")
    with pytest.raises(RemoteFailure, match="too short"):
        client._execute_sync("query X { x }", {})

    client, session = _optix(_response(payload={"data": {}}), token=None)
    with pytest.raises(RemoteFailure, match="No Optix authentication token"):
        client._execute_sync("query X { x }", {})
    session.post.assert_not_called()


def _openai(response=None, side_effect=None):
    session = Mock()
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        session.post.return_value = response
    return OpenAIClient("https://api.example.test/v1/", timeout_s=9, session=session), session


def test_openai_posts_to_responses_endpoint():
    """The payload is posted to the responses endpoint"""
    client, session = _openai(_response(payload={"output": []}))

    assert client.create_response({"model": "gpt-4o"}, "sk-test") == {"output": []}

    args, kwargs = session.post.call_args
    assert args[0] == "https://api.example.test/v1/responses"
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    assert kwargs["timeout"] == 9


def test_openai_error_message_from_body():
    """API errors quote the message from the body"""
    client, _ = _openai(_response(status=400, payload={"error": {"message": "Invalid schema"}}, reason="Bad Request"))
    with pytest.raises(RemoteFailure, match="OpenAI API error: Invalid schema") as excinfo:
        client.create_response({}, "sk-test")
    assert excinfo.value.status == 400
    assert excinfo.value.source == "backend"


def test_openai_network_failure_and_timeout():
    """Network failures and timeouts become remote failures"""
    client, _ = _openai(side_effect=requests.ConnectionError("down"))
    with pytest.raises(RemoteFailure, match="OpenAI request failed"):
        client.create_response({}, "sk-test")

    client, _ = _openai(side_effect=requests.Timeout("slow"))
    with pytest.raises(RemoteFailure, match="timed out after 9s"):
        client.create_response({}, "sk-test")


def test_openai_non_json_body():
    """A non-JSON body is a remote failure"""
    client, _ = _openai(_response(payload=None, text="gateway"))
    with pytest.raises(RemoteFailure, match="not JSON"):
        client.create_response({}, "sk-test")
