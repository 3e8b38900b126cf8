import pytest

from domain.errors import ToolInputError, ToolNotFoundError, ToolPermissionError
from domain.tool.tool_registry import ToolOwner, ToolRegistry


@pytest.fixture
def registry():
    return ToolRegistry()


def test_catalog_contains_client_and_server_tools(registry):
    client = {tool.id for tool in registry.list_by_owner(ToolOwner.CLIENT)}
    server = {tool.id for tool in registry.list_by_owner(ToolOwner.SERVER)}

    assert client == {"local_notification_schedule", "calendar_event_create", "reminder_create", "share_sheet_export"}
    assert server == {"memory_read", "memory_write", "plan_create", "plan_update", "plan_list_active",
                      "checkin_schedule"}


def test_client_tools_require_confirmation(registry):
    assert all(tool.requires_confirmation for tool in registry.list_by_owner(ToolOwner.CLIENT))
    assert not any(tool.requires_confirmation for tool in registry.list_by_owner(ToolOwner.SERVER))


def test_list_by_category(registry):
    assert [tool.id for tool in registry.list_by("plans")] == ["plan_create", "plan_update", "plan_list_active"]
    assert registry.list_by("unknown") == []


def test_unknown_tool_raises_not_found(registry):
    with pytest.raises(ToolNotFoundError) as exc_info:
        registry.get("teleport")

    assert exc_info.value.status_code == 404


def test_describe_renders_json_schema(registry):
    described = registry.get("local_notification_schedule").describe()

    assert described["owner"] == "client"
    assert described["permission_deps"] == ["notifications"]
    schema = described["input_schema"]
    assert schema["required"] == ["title", "body", "trigger", "idempotency_key"]
    assert schema["properties"]["trigger"]["properties"]["kind"]["enum"] == ["at_datetime", "after_delay"]


def test_validate_input_reports_missing_field(registry):
    with pytest.raises(ToolInputError) as exc_info:
        registry.validate_input("reminder_create", {"title": "Stretch"})

    assert str(exc_info.value) == "missing required field: idempotency_key"


def test_validate_input_descends_into_nested_objects(registry):
    payload = {"title": "Stand up", "body": "Time to move", "trigger": {}, "idempotency_key": "k1"}

    with pytest.raises(ToolInputError) as exc_info:
        registry.validate_input("local_notification_schedule", payload)

    assert str(exc_info.value) == "missing required field: trigger.kind"


def test_validate_input_accepts_complete_payload(registry):
    registry.validate_input("calendar_event_create", {
        "title": "Run", "start_iso": "2026-03-02T07:00:00Z", "end_iso": "2026-03-02T07:30:00Z",
        "idempotency_key": "k2",
    })


def test_permissions_are_checked(registry):
    registry.check_permissions("calendar_event_create", ["calendar"])

    with pytest.raises(ToolPermissionError) as exc_info:
        registry.check_permissions("calendar_event_create", ["reminders"])

    assert exc_info.value.status_code == 403
