from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any
from uuid import uuid4

import orjson

from replypilot.broker.base import QueueBackend, QueueDepth, QueueError
from replypilot.core.logs import log_event

logger = logging.getLogger("replypilot.worker")

_KNOWN_FIELDS = frozenset(
    {"id", "kind", "queue", "payload", "created_at", "scheduled_for", "attempts", "last_error"}
)


@dataclass(frozen=True)
class Job:
    kind: str
    queue_name: str
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: float = field(default_factory=time.time)
    scheduled_for: float | None = None
    attempts: int = 0
    last_error: str | None = None
    # Fields written by newer producers; carried through re-enqueues untouched.
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def customer_id(self) -> str | None:
        value = self.payload.get("customer_id")
        return str(value) if value is not None else None

    def is_due(self, *, now_ts: float) -> bool:
        return self.scheduled_for is None or self.scheduled_for <= now_ts


class InvalidJobError(QueueError):
    pass


def encode_job(job: Job) -> bytes:
    doc: dict[str, Any] = dict(job.extra)
    doc.update(
        {
            "id": job.id,
            "kind": job.kind,
            "queue": job.queue_name,
            "payload": job.payload,
            "created_at": job.created_at,
            "scheduled_for": job.scheduled_for,
            "attempts": job.attempts,
            "last_error": job.last_error,
        }
    )
    return orjson.dumps(doc, option=orjson.OPT_SORT_KEYS)


def decode_job(data: bytes, *, queue_name: str) -> Job:
    try:
        doc = orjson.loads(data)
    except orjson.JSONDecodeError as e:
        raise InvalidJobError(f"job on {queue_name} is not valid JSON") from e
    if not isinstance(doc, dict) or not isinstance(doc.get("kind"), str):
        raise InvalidJobError(f"job on {queue_name} is missing a kind")

    payload = doc.get("payload")
    if not isinstance(payload, dict):
        raise InvalidJobError(f"job on {queue_name} has a non-object payload")

    scheduled_for = doc.get("scheduled_for")
    return Job(
        kind=doc["kind"],
        queue_name=doc.get("queue") or queue_name,
        payload=payload,
        id=str(doc.get("id") or uuid4().hex),
        created_at=float(doc.get("created_at") or time.time()),
        scheduled_for=float(scheduled_for) if scheduled_for is not None else None,
        attempts=int(doc.get("attempts") or 0),
        last_error=doc.get("last_error"),
        extra={k: v for k, v in doc.items() if k not in _KNOWN_FIELDS},
    )


class JobQueue:
    """Named durable FIFO queues of JSON jobs on top of a QueueBackend."""

    def __init__(self, backend: QueueBackend) -> None:
        self._backend = backend

    @property
    def backend(self) -> QueueBackend:
        return self._backend

    def enqueue(self, queue_name: str, job: Job) -> Job:
        if job.queue_name != queue_name:
            job = replace(job, queue_name=queue_name)
        data = encode_job(job)
        if job.scheduled_for is not None and job.scheduled_for > time.time():
            self._backend.schedule(queue_name=queue_name, data=data, due_ts=job.scheduled_for)
        else:
            self._backend.push(queue_name=queue_name, data=data)
        log_event(
            logger,
            "queue.job.enqueued",
            level=logging.DEBUG,
            queue=queue_name,
            job_id=job.id,
            kind=job.kind,
            scheduled_for=job.scheduled_for,
        )
        return job

    def dequeue_blocking(self, queue_name: str, timeout_seconds: int) -> Job | None:
        data = self._backend.pop_blocking(queue_name=queue_name, timeout_seconds=timeout_seconds)
        if data is None:
            return None
        try:
            return decode_job(data, queue_name=queue_name)
        except InvalidJobError:
            # Undecodable jobs can never succeed; park them where an operator can see them.
            self._backend.push_dead(queue_name=queue_name, data=data)
            raise

    def promote_due(self, queue_name: str, *, now_ts: float | None = None) -> int:
        return self._backend.promote_due(
            queue_name=queue_name, now_ts=time.time() if now_ts is None else now_ts
        )

    def dead_letter(self, job: Job, *, error: str) -> None:
        self._backend.push_dead(
            queue_name=job.queue_name,
            data=encode_job(replace(job, last_error=error)),
        )

    def list_dead_letters(self, queue_name: str, *, limit: int = 50) -> list[Job]:
        jobs: list[Job] = []
        for data in self._backend.list_dead(queue_name=queue_name, limit=limit):
            try:
                jobs.append(decode_job(data, queue_name=queue_name))
            except InvalidJobError:
                continue
        return jobs

    def replay_dead_letter(self, queue_name: str, job_id: str, *, scan_limit: int = 1000) -> Job | None:
        for data in self._backend.list_dead(queue_name=queue_name, limit=scan_limit):
            try:
                job = decode_job(data, queue_name=queue_name)
            except InvalidJobError:
                continue
            if job.id != job_id:
                continue
            if not self._backend.remove_dead(queue_name=queue_name, data=data):
                return None
            return self.enqueue(
                queue_name,
                replace(job, attempts=0, last_error=None, scheduled_for=None),
            )
        return None

    def depth(self, queue_name: str) -> QueueDepth:
        return self._backend.depth(queue_name=queue_name)

    def publish(self, channel: str, message: dict[str, Any]) -> None:
        self._backend.publish(channel=channel, data=orjson.dumps(message, option=orjson.OPT_SORT_KEYS))

    def ping(self) -> bool:
        return self._backend.ping()
