from __future__ import annotations

import time

import orjson
import pytest

from replypilot.broker.memory import MemoryQueueBackend
from replypilot.worker.queue import InvalidJobError, Job, JobQueue, decode_job, encode_job


def _job(n: int, **fields) -> Job:  # type: ignore[no-untyped-def]
    return Job(kind="sms_send", queue_name="sms_queue", payload={"to": f"+45{n:08d}", "body": "x"}, **fields)


def test_fifo_round_trip(job_queue: JobQueue) -> None:
    first = job_queue.enqueue("sms_queue", _job(1))
    second = job_queue.enqueue("sms_queue", _job(2))

    got1 = job_queue.dequeue_blocking("sms_queue", 0)
    got2 = job_queue.dequeue_blocking("sms_queue", 0)

    assert got1 is not None and got2 is not None
    assert [got1.id, got2.id] == [first.id, second.id]
    assert got1.payload == first.payload
    assert job_queue.dequeue_blocking("sms_queue", 0) is None


def test_empty_queue_returns_none_after_timeout(job_queue: JobQueue) -> None:
    start = time.monotonic()
    assert job_queue.dequeue_blocking("ai_queue", 1) is None
    assert time.monotonic() - start >= 0.9


def test_unknown_fields_survive_decode_and_reencode() -> None:
    raw = orjson.dumps(
        {
            "id": "abc",
            "kind": "sms_send",
            "queue": "sms_queue",
            "payload": {"to": "+45"},
            "priority": 7,
            "trace": {"span": "s1"},
        }
    )
    job = decode_job(raw, queue_name="sms_queue")

    assert job.id == "abc"
    assert job.extra == {"priority": 7, "trace": {"span": "s1"}}
    again = orjson.loads(encode_job(job))
    assert again["priority"] == 7
    assert again["trace"] == {"span": "s1"}


def test_invalid_job_is_dead_lettered(queue_backend: MemoryQueueBackend, job_queue: JobQueue) -> None:
    queue_backend.push(queue_name="sms_queue", data=b"not json")

    with pytest.raises(InvalidJobError):
        job_queue.dequeue_blocking("sms_queue", 0)
    assert job_queue.depth("sms_queue").dead == 1


def test_future_job_waits_in_delayed_set(job_queue: JobQueue) -> None:
    due = time.time() + 30
    job = job_queue.enqueue("ai_queue", _job(3, scheduled_for=due))

    depth = job_queue.depth("ai_queue")
    assert (depth.ready, depth.delayed) == (0, 1)
    assert job_queue.promote_due("ai_queue", now_ts=due - 1) == 0
    assert job_queue.promote_due("ai_queue", now_ts=due) == 1

    promoted = job_queue.dequeue_blocking("ai_queue", 0)
    assert promoted is not None
    assert promoted.id == job.id
    assert promoted.scheduled_for == due


def test_dead_letter_list_and_replay(job_queue: JobQueue) -> None:
    job = _job(4, attempts=3)
    job_queue.dead_letter(job, error="carrier down")

    dead = job_queue.list_dead_letters("sms_queue")
    assert [d.id for d in dead] == [job.id]
    assert dead[0].last_error == "carrier down"

    replayed = job_queue.replay_dead_letter("sms_queue", job.id)
    assert replayed is not None
    assert replayed.attempts == 0
    assert replayed.last_error is None
    assert job_queue.depth("sms_queue").dead == 0

    ready = job_queue.dequeue_blocking("sms_queue", 0)
    assert ready is not None and ready.id == job.id

    assert job_queue.replay_dead_letter("sms_queue", "missing") is None


def test_publish_encodes_json(queue_backend: MemoryQueueBackend, job_queue: JobQueue) -> None:
    job_queue.publish("queue:sms_queue:completed", {"job_id": "j1", "success": True})

    channel, data = queue_backend.published[-1]
    assert channel == "queue:sms_queue:completed"
    assert orjson.loads(data) == {"job_id": "j1", "success": True}
