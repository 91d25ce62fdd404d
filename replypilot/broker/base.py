from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class QueueDepth:
    ready: int
    delayed: int
    dead: int


class QueueError(RuntimeError):
    pass


def delayed_key(queue_name: str) -> str:
    return f"{queue_name}:delayed"


def dead_key(queue_name: str) -> str:
    return f"{queue_name}:dead"


class QueueBackend:
    """Byte-level queue storage shared by every named queue.

    Ready jobs live in a FIFO list per queue, deferred jobs in a due-time
    ordered set, and exhausted jobs in a dead-letter list. Pops are atomic:
    an item handed to one consumer is never handed to another.
    """

    def push(self, *, queue_name: str, data: bytes) -> None:  # pragma: no cover
        raise NotImplementedError

    def pop_blocking(self, *, queue_name: str, timeout_seconds: int) -> bytes | None:  # pragma: no cover
        raise NotImplementedError

    def schedule(self, *, queue_name: str, data: bytes, due_ts: float) -> None:  # pragma: no cover
        raise NotImplementedError

    def promote_due(self, *, queue_name: str, now_ts: float, limit: int = 100) -> int:  # pragma: no cover
        raise NotImplementedError

    def push_dead(self, *, queue_name: str, data: bytes) -> None:  # pragma: no cover
        raise NotImplementedError

    def list_dead(self, *, queue_name: str, limit: int) -> list[bytes]:  # pragma: no cover
        raise NotImplementedError

    def remove_dead(self, *, queue_name: str, data: bytes) -> bool:  # pragma: no cover
        raise NotImplementedError

    def depth(self, *, queue_name: str) -> QueueDepth:  # pragma: no cover
        raise NotImplementedError

    def publish(self, *, channel: str, data: bytes) -> None:  # pragma: no cover
        raise NotImplementedError

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None
