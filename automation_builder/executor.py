"""Capability executor: runs catalog tools against the Optix API."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from .errors import RemoteFailure, UnknownCapability
from .tool_registry import TOOLS_BY_NAME, validate_toolcall

logger = logging.getLogger("automation_builder")


AVAILABLE_STEPS_QUERY = """
query GetWorkflowAvailableSteps {
    workflowAvailableSteps {
        __typename
        ... on WorkflowTrigger {
            workflow_step_id
            trigger_type
            variables
            requires_automations_plus
        }
        ... on WorkflowCondition {
            workflow_step_id
            condition_operation
            requires_automations_plus
        }
        ... on WorkflowDelay {
            workflow_step_id
            requires_automations_plus
        }
        ... on WorkflowAction {
            workflow_step_id
            action_type
            requires_automations_plus
        }
    }
}
"""

ACTION_TYPES_QUERY = """
query WorkflowActionEnumValues {
    __type(name: "WorkflowActionType") {
        name
        enumValues {
            name
            description
        }
    }
}
"""

ADMINS_QUERY = """
query GetAdmins {
    admins {
        id
        name
        email
    }
}
"""

ACCESS_TEMPLATES_QUERY = """
query GetAccessTemplates {
    accessTemplates {
        id
        name
        description
    }
}
"""

ORGANIZATION_QUERY = """
query GetOrgIDandName {
    organization {
        organization_id
        name
        square_logo {
            url
        }
    }
}
"""

COMMIT_WORKFLOW_MUTATION = """
mutation CreateWorkflow($organization_id: ID!, $input: WorkflowInput!) {
    workflowsCommit(organization_id: $organization_id, input: $input) {
        success
        message
        data {
            workflow_id
        }
    }
}
"""

_STEP_TYPENAMES = {
    "WorkflowTrigger": "trigger",
    "WorkflowCondition": "condition",
    "WorkflowDelay": "delay",
    "WorkflowAction": "action",
}

# Fields of workflowAvailableSteps entries that must be strings when present.
_STRING_FIELDS = ("__typename", "trigger_type", "action_type", "condition_operation")

# Shapes returned when the remote call fails, so the backend still sees the
# expected keys next to the error.
_FALLBACKS: Dict[str, Dict[str, Any]] = {
    "get_available_triggers": {"triggers": [], "count": 0},
    "get_available_variables": {"variables": {}},
    "get_conditions_for_trigger": {"conditions": [], "condition_operations": []},
    "get_available_actions": {"actions": [], "count": 0},
    "get_available_workflow_steps": {"steps": [], "count": 0},
    "get_reference_data": {"items": []},
    "validate_automation_data": {"valid": False, "errors": [], "warnings": []},
    "commit_workflow": {"success": False, "workflow_id": None},
}


class GraphQLClient(Protocol):
    async def resolve_organization_id(self) -> Optional[str]:
        ...

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...


class CapabilityExecutor:
    """Executes one catalog capability by name.

    Remote failures are absorbed into a fallback result carrying ``error``
    so the conversation can continue; only an unknown capability name
    raises.
    """

    def __init__(self, client: GraphQLClient):
        self.client = client

    async def execute(self, name: str, args: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if name not in TOOLS_BY_NAME:
            logger.error(f"Unknown capability requested: {name}")
            raise UnknownCapability(name)
        args = {} if args is None else args

        validation = validate_toolcall(name, args)
        if not validation.ok:
            logger.warning(f"Rejected arguments for {name}: {validation.error}")
            return {"error": validation.error, "tool": name}

        handler = getattr(self, f"_{name}")
        try:
            return await handler(**args)
        except RemoteFailure as e:
            logger.warning(f"Capability {name} degraded: {e}")
            fallback = {key: _copy(value) for key, value in _FALLBACKS[name].items()}
            if name == "get_conditions_for_trigger":
                fallback["trigger_type"] = args.get("trigger_type")
            elif name == "get_available_workflow_steps":
                fallback["step_type"] = args.get("step_type")
            elif name == "get_reference_data":
                fallback["data_type"] = args.get("data_type")
            fallback["error"] = str(e)
            fallback["degraded"] = True
            return fallback

    async def _available_steps(self) -> List[Dict[str, Any]]:
        data = await self.client.execute(AVAILABLE_STEPS_QUERY)
        steps = data.get("workflowAvailableSteps")
        if not isinstance(steps, list):
            raise RemoteFailure("workflowAvailableSteps missing from Optix response", source="optix")
        entries = [step for step in steps if isinstance(step, dict)]
        for step in entries:
            for key in _STRING_FIELDS:
                value = step.get(key)
                if value is not None and not isinstance(value, str):
                    raise RemoteFailure(f"Malformed {key} in workflowAvailableSteps: {value!r}", source="optix")
        return entries

    async def _triggers(self) -> List[Dict[str, Any]]:
        return [_trigger_entry(step) for step in await self._available_steps() if _step_kind(step) == "trigger"]

    async def _get_available_triggers(self) -> Dict[str, Any]:
        triggers = await self._triggers()
        return {"triggers": triggers, "count": len(triggers)}

    async def _get_available_variables(self) -> Dict[str, Any]:
        triggers = await self._triggers()
        return {"variables": {t["trigger_type"]: t["variables"] for t in triggers}}

    async def _get_conditions_for_trigger(self, trigger_type: str) -> Dict[str, Any]:
        steps = await self._available_steps()
        operations = sorted(
            {
                step["condition_operation"]
                for step in steps
                if _step_kind(step) == "condition" and step.get("condition_operation")
            }
        )
        triggers = [_trigger_entry(step) for step in steps if _step_kind(step) == "trigger"]
        wanted = trigger_type.strip().lower()
        for trigger in triggers:
            if str(trigger["trigger_type"]).lower() == wanted:
                return {
                    "trigger_type": trigger["trigger_type"],
                    "conditions": trigger["variables"],
                    "condition_operations": operations,
                }
        return {
            "trigger_type": trigger_type,
            "conditions": [],
            "condition_operations": operations,
            "available_trigger_types": [t["trigger_type"] for t in triggers],
            "error": f"Unknown trigger type: {trigger_type}",
        }

    async def _get_available_actions(self) -> Dict[str, Any]:
        data = await self.client.execute(ACTION_TYPES_QUERY)
        enum_type = data.get("__type")
        if not isinstance(enum_type, dict) or not isinstance(enum_type.get("enumValues"), list):
            raise RemoteFailure("WorkflowActionType enum missing from Optix response", source="optix")
        actions = [
            {"id": value.get("name"), "description": value.get("description") or ""}
            for value in enum_type["enumValues"]
            if isinstance(value, dict) and value.get("name")
        ]
        return {"actions": actions, "count": len(actions)}

    async def _get_available_workflow_steps(self, step_type: str) -> Dict[str, Any]:
        steps = [step for step in await self._available_steps() if _step_kind(step) == step_type]
        cleaned = [{k: v for k, v in step.items() if k != "__typename"} for step in steps]
        return {"step_type": step_type, "steps": cleaned, "count": len(cleaned)}

    async def _get_reference_data(self, data_type: str) -> Dict[str, Any]:
        if data_type == "triggers":
            items = await self._triggers()
        elif data_type == "admins":
            items = _list_field(await self.client.execute(ADMINS_QUERY), "admins")
        elif data_type == "access_templates":
            items = _list_field(await self.client.execute(ACCESS_TEMPLATES_QUERY), "accessTemplates")
        else:
            organization = (await self.client.execute(ORGANIZATION_QUERY)).get("organization")
            items = [organization] if isinstance(organization, dict) else []
        return {"data_type": data_type, "items": items, "count": len(items)}

    async def _validate_automation_data(self, automation_data: Dict[str, Any]) -> Dict[str, Any]:
        errors, warnings = check_automation_structure(automation_data)

        steps = await self._available_steps()
        known_triggers = {str(s["trigger_type"]) for s in steps if _step_kind(s) == "trigger" and s.get("trigger_type")}
        known_actions = {str(s["action_type"]) for s in steps if _step_kind(s) == "action" and s.get("action_type")}

        trigger_type = _trigger_type_of(automation_data)
        if trigger_type and known_triggers and trigger_type not in known_triggers:
            errors.append(f"Trigger type '{trigger_type}' is not available for this organization")
        for index, step in enumerate(_steps_of(automation_data), start=1):
            action_type = step.get("action_type") if isinstance(step, dict) else None
            if isinstance(action_type, str) and action_type and known_actions and action_type not in known_actions:
                errors.append(f"Step {index}: action type '{action_type}' is not available")

        return {"valid": not errors, "errors": errors, "warnings": warnings}

    async def _commit_workflow(self, workflow_data: Dict[str, Any]) -> Dict[str, Any]:
        organization_id = await self.client.resolve_organization_id()
        if not organization_id:
            raise RemoteFailure("No organization id available to commit the workflow", source="optix")
        data = await self.client.execute(
            COMMIT_WORKFLOW_MUTATION,
            {"organization_id": organization_id, "input": workflow_data},
        )
        commit = data.get("workflowsCommit")
        if not isinstance(commit, dict):
            raise RemoteFailure("workflowsCommit missing from Optix response", source="optix")
        payload = commit.get("data") if isinstance(commit.get("data"), dict) else {}
        result = {
            "success": bool(commit.get("success")),
            "message": commit.get("message") or "",
            "workflow_id": payload.get("workflow_id"),
        }
        if result["success"]:
            logger.info(f"Committed workflow {result['workflow_id']} for organization {organization_id}")
        else:
            result["error"] = result["message"] or "Workflow commit was rejected"
        return result


def check_automation_structure(automation_data: Dict[str, Any]):
    """Local structural checks; returns ``(errors, warnings)``."""
    errors: List[str] = []
    warnings: List[str] = []

    name = automation_data.get("name")
    if not isinstance(name, str) or not name.strip():
        errors.append("Automation needs a name")
    if not _trigger_type_of(automation_data):
        errors.append("Automation needs a trigger_type")

    steps = automation_data.get("steps")
    if not isinstance(steps, list) or not steps:
        errors.append("Automation needs at least one step")
        return errors, warnings

    has_action = False
    for index, step in enumerate(steps, start=1):
        if not isinstance(step, dict):
            errors.append(f"Step {index} must be an object")
            continue
        kind = step.get("type")
        if kind not in ("condition", "action", "delay"):
            errors.append(f"Step {index} has unknown type {kind!r}")
            continue
        if kind == "action":
            has_action = True
            action_type = step.get("action_type")
            if not isinstance(action_type, str) or not action_type.strip():
                errors.append(f"Step {index}: action needs an action_type")
        elif kind == "delay":
            duration = step.get("duration")
            if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration <= 0:
                errors.append(f"Step {index}: delay needs a positive duration")
            following = steps[index] if index < len(steps) else None
            if not isinstance(following, dict) or following.get("type") != "condition":
                warnings.append(
                    f"Step {index}: consider adding a condition after the delay "
                    "so the automation re-checks before acting"
                )
        elif kind == "condition" and not step.get("variable"):
            errors.append(f"Step {index}: condition needs a variable")
    if not has_action:
        errors.append("Automation needs at least one action")
    return errors, warnings


def _step_kind(step: Dict[str, Any]) -> Optional[str]:
    typename = step.get("__typename")
    kind = _STEP_TYPENAMES.get(typename) if isinstance(typename, str) else None
    if kind:
        return kind
    if "trigger_type" in step:
        return "trigger"
    if "action_type" in step:
        return "action"
    if "condition_operation" in step:
        return "condition"
    return None


def _trigger_entry(step: Dict[str, Any]) -> Dict[str, Any]:
    trigger_type = step.get("trigger_type")
    return {
        "id": trigger_type,
        "trigger_type": trigger_type,
        "workflow_step_id": step.get("workflow_step_id"),
        "requires_automations_plus": bool(step.get("requires_automations_plus")),
        "variables": step.get("variables") or [],
    }


def _trigger_type_of(automation_data: Dict[str, Any]) -> Optional[str]:
    trigger = automation_data.get("trigger")
    if isinstance(trigger, dict):
        trigger = trigger.get("trigger_type")
    trigger = trigger or automation_data.get("trigger_type")
    return trigger if isinstance(trigger, str) and trigger.strip() else None


def _steps_of(automation_data: Dict[str, Any]) -> List[Any]:
    steps = automation_data.get("steps")
    return steps if isinstance(steps, list) else []


def _list_field(data: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    items = data.get(key)
    if not isinstance(items, list):
        raise RemoteFailure(f"{key} missing from Optix response", source="optix")
    return [item for item in items if isinstance(item, dict)]


def _copy(value: Any) -> Any:
    if isinstance(value, dict):
        return dict(value)
    if isinstance(value, list):
        return list(value)
    return value
