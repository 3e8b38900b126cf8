from typing import Dict, List, Any, Iterable, Optional
from pydantic import BaseModel, Field
from enum import Enum

from domain.errors import ToolInputError, ToolNotFoundError, ToolPermissionError


class ToolOwner(str, Enum):
    """Who executes the tool"""
    CLIENT = "client"
    SERVER = "server"


class SchemaField(BaseModel):
    """Typed subset of JSON schema used to describe tool inputs and outputs"""
    type: str
    required: List[str] = Field(default_factory=list)
    properties: Dict[str, "SchemaField"] = Field(default_factory=dict)
    items: Optional["SchemaField"] = None
    enum: Optional[List[str]] = None

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": self.type}
        if self.required:
            schema["required"] = list(self.required)
        if self.properties:
            schema["properties"] = {name: field.to_json_schema() for name, field in self.properties.items()}
        if self.items is not None:
            schema["items"] = self.items.to_json_schema()
        if self.enum:
            schema["enum"] = list(self.enum)
        return schema


SchemaField.model_rebuild()


class Tool(BaseModel):
    """Catalog entry for a client- or server-executed tool"""
    id: str
    owner: ToolOwner
    category: str
    description: str = ""
    requires_confirmation: bool
    permission_deps: List[str] = Field(default_factory=list)
    input_schema: SchemaField
    output_schema: SchemaField

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner.value,
            "category": self.category,
            "description": self.description,
            "requires_confirmation": self.requires_confirmation,
            "permission_deps": list(self.permission_deps),
            "input_schema": self.input_schema.to_json_schema(),
            "output_schema": self.output_schema.to_json_schema(),
        }


def _string(enum: Optional[List[str]] = None) -> SchemaField:
    return SchemaField(type="string", enum=enum)


def _integer() -> SchemaField:
    return SchemaField(type="integer")


def _array(items: Optional[SchemaField] = None) -> SchemaField:
    return SchemaField(type="array", items=items)


def _object(required: Iterable[str] = (), **properties: SchemaField) -> SchemaField:
    return SchemaField(type="object", required=list(required), properties=properties)


_ALARMS = _array(_object(lead_minutes=_integer()))


def _client_tools() -> List[Tool]:
    return [
        Tool(
            id="local_notification_schedule",
            owner=ToolOwner.CLIENT,
            category="notifications",
            description="Schedule a local notification on the device",
            requires_confirmation=True,
            permission_deps=["notifications"],
            input_schema=_object(
                ["title", "body", "trigger", "idempotency_key"],
                title=_string(),
                body=_string(),
                trigger=_object(
                    ["kind"],
                    kind=_string(["at_datetime", "after_delay"]),
                    fire_at_iso=_string(),
                    delay_sec=_integer(),
                ),
                deep_link=_object(url=_string()),
                idempotency_key=_string(),
            ),
            output_schema=_object(scheduled_id=_string(), status=_string()),
        ),
        Tool(
            id="calendar_event_create",
            owner=ToolOwner.CLIENT,
            category="calendar",
            description="Create a calendar event on the device",
            requires_confirmation=True,
            permission_deps=["calendar"],
            input_schema=_object(
                ["title", "start_iso", "end_iso", "idempotency_key"],
                title=_string(),
                start_iso=_string(),
                end_iso=_string(),
                location=_string(),
                notes=_string(),
                alarms=_ALARMS,
                idempotency_key=_string(),
            ),
            output_schema=_object(event_id=_string(), status=_string()),
        ),
        Tool(
            id="reminder_create",
            owner=ToolOwner.CLIENT,
            category="reminders",
            description="Create a reminder on the device",
            requires_confirmation=True,
            permission_deps=["reminders"],
            input_schema=_object(
                ["title", "idempotency_key"],
                title=_string(),
                notes=_string(),
                due_iso=_string(),
                priority=_integer(),
                alarms=_ALARMS,
                idempotency_key=_string(),
            ),
            output_schema=_object(reminder_id=_string(), status=_string()),
        ),
        Tool(
            id="share_sheet_export",
            owner=ToolOwner.CLIENT,
            category="export",
            description="Export a plan or review through the share sheet",
            requires_confirmation=True,
            input_schema=_object(
                ["format", "payload_ref", "idempotency_key"],
                format=_string(["markdown", "pdf", "text"]),
                payload_ref=_object(type=_string(), id=_string()),
                idempotency_key=_string(),
            ),
            output_schema=_object(status=_string()),
        ),
    ]


def _server_tools() -> List[Tool]:
    return [
        Tool(
            id="memory_read",
            owner=ToolOwner.SERVER,
            category="memory",
            description="Search the user's stored memory",
            requires_confirmation=False,
            input_schema=_object(["uid", "query"], uid=_string(), query=_string(), limit=_integer()),
            output_schema=_object(
                hits=_array(_object(type=_string(), id=_string(), snippet=_string(), score=SchemaField(type="number")))
            ),
        ),
        Tool(
            id="memory_write",
            owner=ToolOwner.SERVER,
            category="memory",
            description="Add commitments or set preferences in the user's memory",
            requires_confirmation=False,
            input_schema=_object(
                ["uid", "patch"],
                uid=_string(),
                patch=_object(
                    commitments_add=_array(),
                    preferences_set=_object(),
                    redactions=_array(),
                ),
            ),
            output_schema=_object(status=_string()),
        ),
        Tool(
            id="plan_create",
            owner=ToolOwner.SERVER,
            category="plans",
            description="Persist a new active plan",
            requires_confirmation=False,
            input_schema=_object(
                ["uid", "coach_id", "plan"],
                uid=_string(),
                coach_id=_string(),
                plan=_object(
                    ["title", "objective", "horizon"],
                    title=_string(),
                    objective=_string(),
                    horizon=_string(["today", "week", "month", "quarter"]),
                    milestones=_array(),
                    next_actions=_array(),
                ),
            ),
            output_schema=_object(plan_id=_string(), status=_string()),
        ),
        Tool(
            id="plan_update",
            owner=ToolOwner.SERVER,
            category="plans",
            description="Update fields of an existing plan",
            requires_confirmation=False,
            input_schema=_object(["uid", "plan_id", "updates"], uid=_string(), plan_id=_string(), updates=_object()),
            output_schema=_object(status=_string()),
        ),
        Tool(
            id="plan_list_active",
            owner=ToolOwner.SERVER,
            category="plans",
            description="List the user's active plans, newest first",
            requires_confirmation=False,
            input_schema=_object(["uid"], uid=_string(), limit=_integer()),
            output_schema=_object(plans=_array(_object())),
        ),
        Tool(
            id="checkin_schedule",
            owner=ToolOwner.SERVER,
            category="checkins",
            description="Schedule a recurring check-in",
            requires_confirmation=False,
            input_schema=_object(
                ["uid", "coach_id", "cadence", "channel"],
                uid=_string(),
                coach_id=_string(),
                cadence=_object(
                    ["kind", "hour", "minute"],
                    kind=_string(["daily", "weekdays", "weekly", "custom_cron"]),
                    hour=_integer(),
                    minute=_integer(),
                    weekdays=_array(_integer()),
                    cron=_string(),
                ),
                channel=_string(["in_app", "local_notification_proposal"]),
            ),
            output_schema=_object(checkin_id=_string(), status=_string()),
        ),
    ]


class ToolRegistry:
    """Static catalog of the tools a coach may propose or run"""

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self.tools: Dict[str, Tool] = {}
        self.tool_categories: Dict[str, List[str]] = {}
        for tool in tools if tools is not None else _client_tools() + _server_tools():
            self.register_tool(tool)

    def register_tool(self, tool: Tool):
        """Register a tool; only called while the catalog is being built"""

        self.tools[tool.id] = tool
        self.tool_categories.setdefault(tool.category, []).append(tool.id)

    def get(self, tool_id: str) -> Tool:
        tool = self.tools.get(tool_id)
        if tool is None:
            raise ToolNotFoundError(tool_id)
        return tool

    def list(self) -> List[Tool]:
        return list(self.tools.values())

    def list_by(self, category: str) -> List[Tool]:
        return [self.tools[tool_id] for tool_id in self.tool_categories.get(category, [])]

    def list_by_owner(self, owner: ToolOwner) -> List[Tool]:
        return [tool for tool in self.tools.values() if tool.owner == owner]

    def validate_input(self, tool_id: str, input_data: Dict[str, Any]) -> None:
        """Check required-field presence, descending into nested objects that are present"""

        tool = self.get(tool_id)
        _check_required(tool.input_schema, input_data, prefix="")

    def check_permissions(self, tool_id: str, granted: Iterable[str]) -> None:
        tool = self.get(tool_id)
        granted_set = set(granted)
        for permission in tool.permission_deps:
            if permission not in granted_set:
                raise ToolPermissionError(f"missing required permission: {permission}")


def _check_required(schema: SchemaField, value: Any, prefix: str) -> None:
    if not isinstance(value, dict):
        raise ToolInputError(f"expected object for {prefix.rstrip('.') or 'input'}")

    for name in schema.required:
        if name not in value:
            raise ToolInputError(f"missing required field: {prefix}{name}")

    for name, field in schema.properties.items():
        if field.type == "object" and field.required and isinstance(value.get(name), dict):
            _check_required(field, value[name], prefix=f"{prefix}{name}.")
