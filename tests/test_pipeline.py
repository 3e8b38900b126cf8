import asyncio
import json

import pytest

from application.container import ServiceContainer
from conftest import EXTRACTION_MARKER, ROUTER_MARKER
from domain.models.turn import ToolRequest, TurnInput
from domain.streaming.events import EventType
from domain.tool.tool_detector import ToolIntentDetector
from infrastructure.storage.document_store import SESSIONS, USERS
from infrastructure.storage.memory_document_store import InMemoryDocumentStore


class UnconfirmedCalendarDetector(ToolIntentDetector):
    """Always proposes a calendar event without asking for confirmation"""

    def detect(self, text, spec):
        return [ToolRequest(
            request_id="tr_unconfirmed",
            tool="calendar_event_create",
            requires_confirmation=False,
            reason="Schedule it"
        )]


class UnavailableUserStore(InMemoryDocumentStore):
    async def get(self, collection, doc_id):
        if collection == USERS:
            raise ConnectionError("store unavailable")
        return await super().get(collection, doc_id)


def route(name, confidence=0.9):
    return json.dumps({"route": name, "confidence": confidence})


def turn(message="Help me plan my week", session_id="sess_1"):
    return TurnInput(session_id=session_id, uid="user_1", message=message)


async def collect(pipeline, turn_input):
    stream = pipeline.start(turn_input)
    events = [event async for event in stream.handler.events()]
    await stream.task
    return events


def types(events):
    return [event.type for event in events]


@pytest.fixture
async def pipeline(container, store):
    await store.set(SESSIONS, "sess_1", {"id": "sess_1", "uid": "user_1"})
    return container.pipeline


async def test_make_a_system_turn_streams_plan_card(pipeline, model):
    model.queue(ROUTER_MARKER, route("make_a_system"))
    model.queue(EXTRACTION_MARKER, json.dumps({"plan": {"title": "Weekly system", "horizon": "week"}}))

    events = await collect(pipeline, turn())

    assert types(events) == [
        EventType.STREAM_OPEN,
        EventType.MESSAGE_DELTA,
        EventType.MESSAGE_DELTA,
        EventType.MESSAGE_FINAL,
        EventType.CARD_PLAN,
        EventType.STREAM_DONE,
    ]
    assert events[4].plan.title == "Weekly system"
    assert events[-1].status == "ok"


async def test_router_failure_emits_single_error(pipeline, model):
    model.queue(ROUTER_MARKER, ConnectionError("network unreachable"))

    events = await collect(pipeline, turn())

    assert types(events) == [EventType.ERROR]
    assert events[0].code == "ROUTER_ERROR"
    assert pipeline.metrics.counters["errors.ROUTER_ERROR"] == 1


async def test_non_finite_router_confidence_still_completes_turn(pipeline, model):
    model.queue(ROUTER_MARKER, '{"route": "quick_nudge", "confidence": NaN}')

    events = await collect(pipeline, turn("I'm stuck"))

    assert types(events)[0] == EventType.STREAM_OPEN
    assert types(events)[-1] == EventType.STREAM_DONE
    assert EventType.ERROR not in types(events)


async def test_medical_content_produces_boundary_notice_then_done(pipeline, model):
    model.queue(ROUTER_MARKER, route("quick_nudge"))
    model.stream_tokens = ["I can't diagnose ", "that, but let's pick one step."]

    events = await collect(pipeline, turn("Is this a migraine?"))

    assert types(events)[-2:] == [EventType.POLICY_NOTICE, EventType.STREAM_DONE]
    assert events[-2].kind == "safety_boundary"
    assert events[-1].status == "ok"


async def test_unconfirmed_tool_request_becomes_notice(model, store, settings, llm):
    container = ServiceContainer.build(settings, llm=llm, store=store, detector=UnconfirmedCalendarDetector())
    model.queue(ROUTER_MARKER, route("scheduling"))

    events = await collect(container.pipeline, turn("Put my run on the calendar"))

    assert EventType.TOOL_REQUEST not in types(events)
    assert types(events)[-2:] == [EventType.POLICY_NOTICE, EventType.STREAM_DONE]
    assert events[-2].kind == "safety_boundary"
    assert "requires user confirmation" in events[-2].message


async def test_confirmed_tool_request_waits_for_client(pipeline, model, settings):
    model.queue(ROUTER_MARKER, route("scheduling"))
    model.stream_tokens = ["Want me to add it to your calendar?"]

    events = await collect(pipeline, turn("Schedule my run"))

    assert types(events)[-3:] == [EventType.TOOL_REQUEST, EventType.TOOL_STATUS, EventType.STREAM_DONE]
    request, status = events[-3], events[-2]
    assert request.tool == "calendar_event_create"
    assert request.requires_confirmation is True
    assert status.request_id == request.request_id
    assert status.status == "awaiting_confirmation"
    assert status.expires_in_sec == settings.tool_confirmation_ttl_sec


async def test_unparseable_extraction_warns_and_completes(pipeline, model):
    model.queue(ROUTER_MARKER, route("deep_session"))
    model.queue(EXTRACTION_MARKER, "I could not find a plan.")

    events = await collect(pipeline, turn())

    assert types(events)[-2:] == [EventType.POLICY_NOTICE, EventType.STREAM_DONE]
    assert events[-2].kind == "planner_warning"
    assert events[-2].message == "Could not extract structured plan"


async def test_empty_extraction_emits_no_cards(pipeline, model):
    model.queue(ROUTER_MARKER, route("review_retro"))
    model.queue(EXTRACTION_MARKER, "{}")

    events = await collect(pipeline, turn("Review my week"))

    assert types(events)[-2:] == [EventType.MESSAGE_FINAL, EventType.STREAM_DONE]


async def test_context_failure_emits_context_error(settings, llm, model):
    container = ServiceContainer.build(settings, llm=llm, store=UnavailableUserStore())
    model.queue(ROUTER_MARKER, route("quick_nudge"))

    events = await collect(container.pipeline, turn())

    assert types(events) == [EventType.ERROR]
    assert events[0].code == "CONTEXT_ERROR"


async def test_generation_failure_after_tokens_is_fatal(pipeline, model):
    model.queue(ROUTER_MARKER, route("quick_nudge"))
    model.stream_tokens = ["Start ", "with ", "one"]
    model.fail_stream(ValueError("stream broke"), after=1)

    events = await collect(pipeline, turn())

    assert types(events) == [EventType.STREAM_OPEN, EventType.MESSAGE_DELTA, EventType.ERROR]
    assert events[-1].code == "COACH_ERROR"


async def test_memory_is_consolidated_after_done(pipeline, model, store):
    model.queue(ROUTER_MARKER, route("quick_nudge"))

    events = await collect(pipeline, turn())
    assert await pipeline.background.join(timeout=1)

    assert events[-1].type == EventType.STREAM_DONE
    session = await store.get(SESSIONS, "sess_1")
    assert session["summary"]["text"] == "Discussed the week ahead."


async def test_memory_failure_is_not_visible_to_client(pipeline, model):
    model.queue(ROUTER_MARKER, route("quick_nudge"))

    # no session document exists, so the summary write fails
    events = await collect(pipeline, turn(session_id="sess_missing"))
    await pipeline.background.join(timeout=1)

    assert events[-1].type == EventType.STREAM_DONE
    assert pipeline.background.failed == 1
    assert pipeline.metrics.counters["background.failures"] == 1


async def test_cancelled_turn_stops_without_terminal_event(pipeline, model):
    model.queue(ROUTER_MARKER, route("quick_nudge"))
    model.stream_tokens = ["tok"] * 50
    model.stream_delay = 0.01

    stream = pipeline.start(turn())
    while stream.handler.event_count < 3:
        await asyncio.sleep(0.005)
    stream.task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await stream.task

    assert stream.handler.closed is False
    assert pipeline.metrics.counters["pipeline.cancelled"] == 1
    assert pipeline.background.pending == 0
