from __future__ import annotations

import queue
from threading import Lock
from typing import Any


class EventHub:
    """Fans controller and ledger events out to server-sent-event subscribers."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._subscribers: list[queue.Queue[dict[str, Any]]] = []

    def subscribe(self) -> queue.Queue[dict[str, Any]]:
        q: queue.Queue[dict[str, Any]] = queue.Queue(maxsize=200)
        with self._lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue[dict[str, Any]]) -> None:
        with self._lock:
            self._subscribers = [item for item in self._subscribers if item is not q]

    def publish(self, event: str, payload: dict[str, object]) -> None:
        normalized = {"event": event, **payload}
        with self._lock:
            alive: list[queue.Queue[dict[str, Any]]] = []
            for q in self._subscribers:
                try:
                    q.put_nowait(normalized)
                    alive.append(q)
                except queue.Full:
                    continue
            self._subscribers = alive
