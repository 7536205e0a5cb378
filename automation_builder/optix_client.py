"""GraphQL client for the Optix API."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, Optional

import anyio
import requests

from .credentials import CredentialProvider, Credentials
from .errors import RemoteFailure

logger = logging.getLogger("automation_builder")

MIN_TOKEN_LENGTH = 20

_STATUS_MESSAGES = {
    401: "Authentication failed. Token may be invalid or expired. Please refresh the page.",
    403: "Access forbidden. You may not have permission to access this resource.",
    404: "API endpoint not found. Please check the Optix API configuration.",
}

_AUTH_MARKERS = ("authentication", "unauthorized", "token")


@dataclass(frozen=True)
class OptixHttpConfig:
    url: str = "https://api.optixapp.com/graphql"
    timeout_s: int = 30


class OptixClient:
    """Bearer-authenticated GraphQL transport.

    Credentials are pulled from the provider on the first request and kept
    for the lifetime of the client; rotation belongs to the provider.
    """

    def __init__(self, config: OptixHttpConfig, credentials: CredentialProvider, session: Optional[requests.Session] = None):
        self._config = config
        self._provider = credentials
        self._credentials: Optional[Credentials] = None
        self._session = session or requests.Session()

    async def resolve_organization_id(self) -> Optional[str]:
        credentials = await anyio.to_thread.run_sync(self._ensure_credentials, abandon_on_cancel=True)
        return credentials.organization_id

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await anyio.to_thread.run_sync(
            self._execute_sync,
            query,
            variables or {},
            abandon_on_cancel=True,
        )

    def _ensure_credentials(self) -> Credentials:
        if self._credentials is None:
            credentials = self._provider.get_credentials()
            if credentials is None:
                raise RemoteFailure(
                    "No Optix authentication token available",
                    status=401,
                    source="optix",
                    user_message="No authentication token available. Please check your Optix configuration.",
                )
            if len(credentials.token) < MIN_TOKEN_LENGTH:
                raise RemoteFailure(
                    "Optix token appears to be too short",
                    status=401,
                    source="optix",
                    user_message="Invalid token format. Token appears to be too short.",
                )
            self._credentials = credentials
            logger.info("Optix client initialized with token")
        return self._credentials

    def _execute_sync(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        credentials = self._ensure_credentials()
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Authorization": f"Bearer {credentials.token}",
        }
        logger.debug(f"GraphQL request: {query.strip()[:100]}... variables={list(variables)}")
        try:
            response = self._session.post(
                self._config.url,
                json={"query": query, "variables": variables},
                headers=headers,
                timeout=self._config.timeout_s,
            )
        except requests.Timeout as exc:
            raise RemoteFailure(f"Optix request timed out after {self._config.timeout_s}s", source="optix") from exc
        except requests.RequestException as exc:
            raise RemoteFailure(
                f"Optix request failed: {exc}",
                source="optix",
                user_message="Network error. Please check your internet connection and try again.",
            ) from exc

        status = response.status_code
        if status in _STATUS_MESSAGES:
            raise RemoteFailure(_STATUS_MESSAGES[status], status=status, source="optix")
        if status >= 500:
            raise RemoteFailure(
                "Server error. Please try again later or contact Optix support.",
                status=status,
                source="optix",
            )
        if status >= 400:
            raise RemoteFailure(f"HTTP error! status: {status} - {response.reason}", status=status, source="optix")

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise RemoteFailure(f"Optix response was not JSON: {response.text[:200]}", status=status, source="optix") from exc
        if not isinstance(payload, dict):
            raise RemoteFailure("Optix response was not a JSON object", status=status, source="optix")

        errors = payload.get("errors")
        if errors:
            raise _graphql_failure(errors)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise RemoteFailure("Optix response is missing data", status=status, source="optix")
        return data


def _graphql_failure(errors: Any) -> RemoteFailure:
    messages = []
    for error in errors if isinstance(errors, list) else [errors]:
        if isinstance(error, dict):
            messages.append(str(error.get("message", error)))
        else:
            messages.append(str(error))
    auth_messages = [m for m in messages if any(marker in m.lower() for marker in _AUTH_MARKERS)]
    if auth_messages:
        return RemoteFailure("Authentication error: " + ", ".join(auth_messages), status=401, source="optix")
    return RemoteFailure("GraphQL errors: " + ", ".join(messages), source="optix")
