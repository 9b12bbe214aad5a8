from __future__ import annotations

import json
import queue
from typing import Iterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

router = APIRouter(prefix="/api/v1", tags=["events"])


@router.get("/events")
def event_stream(request: Request) -> StreamingResponse:
    hub = request.app.state.events
    subscriber = hub.subscribe()

    def event_iter() -> Iterator[str]:
        try:
            while True:
                try:
                    event = subscriber.get(timeout=10)
                    yield f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"
                except queue.Empty:
                    yield ": keepalive\n\n"
        finally:
            hub.unsubscribe(subscriber)

    return StreamingResponse(event_iter(), media_type="text/event-stream")
