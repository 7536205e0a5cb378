"""Language-model backend client (OpenAI Responses API)."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import requests

from .errors import RemoteFailure


class OpenAIClient:
    def __init__(self, base_url: str, timeout_s: int = 60, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._session = session or requests.Session()

    def create_response(self, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        url = f"{self.base_url}/responses"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        }
        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self.timeout_s)
        except requests.Timeout as exc:
            raise RemoteFailure(f"OpenAI request timed out after {self.timeout_s}s") from exc
        except requests.RequestException as exc:
            raise RemoteFailure(f"OpenAI request failed: {exc}") from exc

        if response.status_code >= 400:
            raise RemoteFailure(
                f"OpenAI API error: {_error_message(response)}",
                status=response.status_code,
            )

        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise RemoteFailure(f"OpenAI response was not JSON: {response.text[:200]}") from exc
        if not isinstance(data, dict):
            raise RemoteFailure(f"OpenAI response was not an object: {str(data)[:200]}")
        return data


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.reason or str(response.status_code)
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.reason or str(response.status_code)
