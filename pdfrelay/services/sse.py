# pdfrelay/services/sse.py
from __future__ import annotations
from typing import Any, AsyncIterator, Optional
import json

from pdfrelay.core.broadcaster import ITEM_PING, Broadcaster, QueueSink
from pdfrelay.core.models import EVENT_DONE, EVENT_STATUS, TERMINAL_STATES, Job

CONNECTED = ": connected\n\n"
PING = ": ping\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Content-Encoding": "none",
    "X-Accel-Buffering": "no",
}

_TERMINAL_VALUES = {s.value for s in TERMINAL_STATES}


def format_event(event: Optional[str], data: Any) -> str:
    head = f"event: {event}\n" if event else ""
    return f"{head}data: {json.dumps(data, ensure_ascii=False)}\n\n"


async def event_stream(broadcaster: Broadcaster, job: Optional[Job], sink: QueueSink) -> AsyncIterator[str]:
    """Frames for one subscriber.

    Ends after ``done``, after the unknown-job ``error``, or right after the
    status snapshot when the job had already finished at attach time.
    """
    yield CONNECTED
    try:
        async with broadcaster.subscription(job, sink):
            async for kind, event, data in sink:
                if kind == ITEM_PING:
                    yield PING
                    continue
                yield format_event(event, data)
                if event == EVENT_DONE:
                    break
                if event == EVENT_STATUS and data.get("status") in _TERMINAL_VALUES:
                    break
    finally:
        sink.disconnect()
