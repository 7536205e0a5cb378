"""Capability catalog and argument validation."""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


STEP_TYPES = ("trigger", "condition", "action", "delay")
REFERENCE_DATA_TYPES = ("admins", "access_templates", "triggers", "organizations")

_JSON_TYPES: Dict[str, Tuple[type, ...]] = {
    "string": (str,),
    "object": (dict,),
    "array": (list,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
}


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameters: Mapping[str, Any]

    def to_backend(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": _thaw(self.parameters),
        }


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    error: Optional[str] = None


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def _schema(properties: Optional[Dict[str, Any]] = None, required: Iterable[str] = ()) -> Mapping[str, Any]:
    return _freeze(
        {
            "type": "object",
            "properties": properties or {},
            "required": list(required),
        }
    )


TOOL_DEFINITIONS: Tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="get_available_triggers",
        description="Get all available trigger types from the Optix workflow schema",
        parameters=_schema(),
    ),
    ToolDefinition(
        name="get_available_variables",
        description="Get the variables each trigger exposes for use in conditions and actions",
        parameters=_schema(),
    ),
    ToolDefinition(
        name="get_conditions_for_trigger",
        description="Get the condition variables available for one trigger type",
        parameters=_schema(
            {
                "trigger_type": {
                    "type": "string",
                    "description": "Trigger type, as returned by get_available_triggers",
                }
            },
            required=["trigger_type"],
        ),
    ),
    ToolDefinition(
        name="get_available_actions",
        description="Get all action types an Optix workflow can perform",
        parameters=_schema(),
    ),
    ToolDefinition(
        name="get_available_workflow_steps",
        description="Get available workflow steps of one kind from the Optix API",
        parameters=_schema(
            {
                "step_type": {
                    "type": "string",
                    "enum": list(STEP_TYPES),
                    "description": "Type of workflow step to retrieve",
                }
            },
            required=["step_type"],
        ),
    ),
    ToolDefinition(
        name="get_reference_data",
        description="Get reference data like admins, access templates, triggers or the organization",
        parameters=_schema(
            {
                "data_type": {
                    "type": "string",
                    "enum": list(REFERENCE_DATA_TYPES),
                    "description": "Type of reference data to retrieve",
                }
            },
            required=["data_type"],
        ),
    ),
    ToolDefinition(
        name="validate_automation_data",
        description="Validate automation data against the Optix workflow schema before committing",
        parameters=_schema(
            {
                "automation_data": {
                    "type": "object",
                    "description": "Automation data to validate",
                }
            },
            required=["automation_data"],
        ),
    ),
    ToolDefinition(
        name="commit_workflow",
        description="Commit a completed, validated workflow to Optix",
        parameters=_schema(
            {
                "workflow_data": {
                    "type": "object",
                    "description": "Complete workflow data to commit",
                }
            },
            required=["workflow_data"],
        ),
    ),
)

TOOLS_BY_NAME: Mapping[str, ToolDefinition] = MappingProxyType(
    {tool.name: tool for tool in TOOL_DEFINITIONS}
)
ALLOWED_TOOLS = frozenset(TOOLS_BY_NAME)


def _expect_type(name: str, value: Any, expected: Iterable[type]) -> Optional[str]:
    expected = tuple(expected)
    # bool is an int subclass; never accept it for numeric fields
    if isinstance(value, bool) and bool not in expected:
        return f"'{name}' must be {', '.join(t.__name__ for t in expected)}"
    if not isinstance(value, expected):
        return f"'{name}' must be {', '.join(t.__name__ for t in expected)}"
    return None


def validate_toolcall(tool: str, args: Any) -> ValidationResult:
    definition = TOOLS_BY_NAME.get(tool)
    if definition is None:
        return ValidationResult(False, f"Tool '{tool}' is not allowed")
    if not isinstance(args, dict):
        return ValidationResult(False, f"Arguments for {tool} must be an object")

    properties = definition.parameters.get("properties", {})
    unknown = set(args.keys()) - set(properties.keys())
    if unknown:
        return ValidationResult(False, f"Unknown keys for {tool}: {sorted(unknown)}")

    for key in definition.parameters.get("required", ()):
        if key not in args:
            return ValidationResult(False, f"{tool} requires '{key}'")

    for key, value in args.items():
        schema = properties[key]
        expected = _JSON_TYPES.get(schema.get("type", ""), (object,))
        err = _expect_type(key, value, expected)
        if err:
            return ValidationResult(False, err)
        allowed = schema.get("enum")
        if allowed is not None and value not in allowed:
            return ValidationResult(False, f"'{key}' must be one of {list(allowed)}")
        if schema.get("type") == "string" and not value.strip():
            return ValidationResult(False, f"'{key}' must not be empty")

    return ValidationResult(True)
