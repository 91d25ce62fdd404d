from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections import deque

from replypilot.broker.base import QueueBackend, QueueDepth


class MemoryQueueBackend(QueueBackend):
    """Single-process backend for local development and tests."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._ready: dict[str, deque[bytes]] = {}
        self._delayed: dict[str, list[tuple[float, int, bytes]]] = {}
        self._dead: dict[str, list[bytes]] = {}
        self._seq = itertools.count()
        self.published: list[tuple[str, bytes]] = []

    def push(self, *, queue_name: str, data: bytes) -> None:
        with self._cond:
            self._ready.setdefault(queue_name, deque()).append(data)
            self._cond.notify_all()

    def pop_blocking(self, *, queue_name: str, timeout_seconds: int) -> bytes | None:
        deadline = time.monotonic() + max(0, timeout_seconds)
        with self._cond:
            while True:
                items = self._ready.get(queue_name)
                if items:
                    return items.popleft()
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(timeout=remaining)

    def schedule(self, *, queue_name: str, data: bytes, due_ts: float) -> None:
        with self._cond:
            heapq.heappush(self._delayed.setdefault(queue_name, []), (due_ts, next(self._seq), data))

    def promote_due(self, *, queue_name: str, now_ts: float, limit: int = 100) -> int:
        moved = 0
        with self._cond:
            heap = self._delayed.get(queue_name) or []
            ready = self._ready.setdefault(queue_name, deque())
            while heap and heap[0][0] <= now_ts and moved < limit:
                _due, _seq, data = heapq.heappop(heap)
                ready.append(data)
                moved += 1
            if moved:
                self._cond.notify_all()
        return moved

    def push_dead(self, *, queue_name: str, data: bytes) -> None:
        with self._cond:
            self._dead.setdefault(queue_name, []).insert(0, data)

    def list_dead(self, *, queue_name: str, limit: int) -> list[bytes]:
        with self._cond:
            return list(self._dead.get(queue_name, [])[:limit])

    def remove_dead(self, *, queue_name: str, data: bytes) -> bool:
        with self._cond:
            items = self._dead.get(queue_name, [])
            try:
                items.remove(data)
            except ValueError:
                return False
            return True

    def depth(self, *, queue_name: str) -> QueueDepth:
        with self._cond:
            return QueueDepth(
                ready=len(self._ready.get(queue_name, ())),
                delayed=len(self._delayed.get(queue_name, ())),
                dead=len(self._dead.get(queue_name, ())),
            )

    def publish(self, *, channel: str, data: bytes) -> None:
        with self._cond:
            self.published.append((channel, data))
