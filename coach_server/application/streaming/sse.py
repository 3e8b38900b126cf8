from typing import Any
import json

from domain.streaming.events import BaseEvent

KEEPALIVE_FRAME = ": keep-alive\n\n"


def format_frame(event: str, data: str) -> str:
    """Encode one SSE frame; every line of ``data`` gets its own ``data:`` prefix"""

    lines = data.splitlines() or [""]
    return f"event: {event}\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


def format_event(event: BaseEvent) -> str:
    return format_frame(event.type.value, _dumps(event.payload()))


def format_keepalive() -> str:
    return KEEPALIVE_FRAME


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
