"""Configuration helpers for the automation builder."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Optional


@dataclass(frozen=True)
class BuilderConfig:
    openai_url: str
    openai_model: str
    openai_api_key: Optional[str]
    openai_prompt_id: Optional[str]
    openai_timeout_s: int
    temperature: float
    max_output_tokens: int
    optix_api_url: str
    optix_token: Optional[str]
    optix_organization_id: Optional[str]
    optix_timeout_s: int
    credentials_file: Optional[str]
    max_tool_calls: int = 5
    max_messages: int = 20
    max_tokens_per_request: int = 8000
    chars_per_token: int = 4


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def load_config(
    openai_url: Optional[str] = None,
    openai_model: Optional[str] = None,
    openai_api_key: Optional[str] = None,
    openai_timeout_s: Optional[int] = None,
    temperature: Optional[float] = None,
    optix_api_url: Optional[str] = None,
    optix_token: Optional[str] = None,
    optix_organization_id: Optional[str] = None,
    max_tool_calls: Optional[int] = None,
    max_messages: Optional[int] = None,
    credentials_file: Optional[str] = None,
) -> BuilderConfig:
    env_openai_url = os.getenv("OPENAI_URL", "https://api.openai.com/v1")
    env_openai_model = os.getenv("OPENAI_MODEL", "gpt-4o")
    env_max_tool_calls = _env_int("BUILDER_MAX_TOOL_CALLS", 5)
    env_max_messages = _env_int("BUILDER_MAX_MESSAGES", 20)

    config = BuilderConfig(
        openai_url=(openai_url or env_openai_url).rstrip("/"),
        openai_model=openai_model or env_openai_model,
        openai_api_key=openai_api_key or os.getenv("OPENAI_API_KEY") or None,
        openai_prompt_id=os.getenv("OPENAI_PROMPT_ID") or None,
        openai_timeout_s=openai_timeout_s or _env_int("OPENAI_TIMEOUT_S", 60),
        temperature=_first(temperature, _env_float("OPENAI_TEMPERATURE", 0.7)),
        max_output_tokens=_env_int("OPENAI_MAX_OUTPUT_TOKENS", 4000),
        optix_api_url=optix_api_url or os.getenv("OPTIX_API_URL", "https://api.optixapp.com/graphql"),
        optix_token=optix_token or os.getenv("OPTIX_TOKEN") or None,
        optix_organization_id=optix_organization_id or os.getenv("OPTIX_ORGANIZATION_ID") or None,
        optix_timeout_s=_env_int("OPTIX_TIMEOUT_S", 30),
        credentials_file=credentials_file or os.getenv("BUILDER_CREDENTIALS_FILE") or None,
        max_tool_calls=_first(max_tool_calls, env_max_tool_calls),
        max_messages=_first(max_messages, env_max_messages),
        max_tokens_per_request=_env_int("BUILDER_MAX_TOKENS", 8000),
        chars_per_token=_env_int("BUILDER_CHARS_PER_TOKEN", 4),
    )
    if config.max_tool_calls < 0:
        raise ValueError("BUILDER_MAX_TOOL_CALLS must not be negative")
    if config.max_messages < 2:
        raise ValueError("BUILDER_MAX_MESSAGES must be at least 2")
    if config.chars_per_token <= 0:
        raise ValueError("BUILDER_CHARS_PER_TOKEN must be positive")
    return config
