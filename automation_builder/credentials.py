"""Credential sources for the Optix API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
import logging
import os
from pathlib import Path
from typing import Optional, Protocol

logger = logging.getLogger("automation_builder")

CONFIG_DIR = Path.home() / ".config" / "automation-builder"
CREDENTIALS_FILE = CONFIG_DIR / "credentials.json"
MAX_CREDENTIAL_AGE = timedelta(hours=24)


def validate_token_format(token: object) -> bool:
    return isinstance(token, str) and bool(token.strip())


@dataclass(frozen=True)
class Credentials:
    token: str
    organization_id: Optional[str] = None
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_fresh(self, now: Optional[datetime] = None, max_age: timedelta = MAX_CREDENTIAL_AGE) -> bool:
        now = now or datetime.now(timezone.utc)
        return now - self.issued_at <= max_age


class CredentialProvider(Protocol):
    def get_credentials(self) -> Optional[Credentials]:
        ...


class StaticCredentialProvider:
    """Hands out one fixed token, e.g. from the environment."""

    def __init__(self, token: Optional[str], organization_id: Optional[str] = None):
        self._credentials = None
        if validate_token_format(token):
            self._credentials = Credentials(token=token.strip(), organization_id=organization_id)

    def get_credentials(self) -> Optional[Credentials]:
        return self._credentials


class FileCredentialStore:
    """Persists the last token handed to the builder.

    A stored token is only returned while it is younger than ``max_age``;
    stale or malformed entries are treated as absent.
    """

    def __init__(self, path: Path = CREDENTIALS_FILE, max_age: timedelta = MAX_CREDENTIAL_AGE):
        self.path = Path(path)
        self.max_age = max_age

    def save(self, credentials: Credentials) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "token": credentials.token,
            "organization_id": credentials.organization_id or "",
            "issued_at": credentials.issued_at.isoformat(),
        }
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            # An existing file keeps its old mode through O_TRUNC.
            self.path.chmod(0o600)
            json.dump(payload, f)
        logger.info(f"Stored credentials for organization {credentials.organization_id or '-'}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()

    def get_credentials(self) -> Optional[Credentials]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                payload = json.load(f)
            issued_at = datetime.fromisoformat(payload["issued_at"])
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable credentials file {self.path}: {e}")
            return None
        token = payload.get("token")
        if not validate_token_format(token):
            return None
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        credentials = Credentials(
            token=token,
            organization_id=payload.get("organization_id") or None,
            issued_at=issued_at,
        )
        if not credentials.is_fresh(max_age=self.max_age):
            logger.info("Stored credentials are older than the freshness bound, ignoring them")
            return None
        return credentials


class ChainedCredentialProvider:
    """Returns the first credentials any provider can supply."""

    def __init__(self, *providers: CredentialProvider):
        self.providers = providers

    def get_credentials(self) -> Optional[Credentials]:
        for provider in self.providers:
            credentials = provider.get_credentials()
            if credentials is not None:
                return credentials
        return None
