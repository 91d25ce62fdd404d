from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from replypilot.broker.base import QueueError
from replypilot.core.deps import get_job_queue, require_ops_token
from replypilot.core.logs import log_event
from replypilot.models.enums import QueueName
from replypilot.schemas.ops import (
    DeadLetterItem,
    DeadLetterReplayResponse,
    DeadLettersResponse,
    QueueDepthItem,
    QueueDepthsResponse,
)
from replypilot.worker.queue import JobQueue

logger = logging.getLogger("replypilot.api")

router = APIRouter(prefix="/ops", tags=["ops"], dependencies=[Depends(require_ops_token)])

_QUEUE_NAMES = [q.value for q in QueueName]


def _require_queue(queue: str) -> str:
    if queue not in _QUEUE_NAMES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Queue not found")
    return queue


def _queue_unavailable(e: QueueError) -> HTTPException:
    log_event(logger, "ops.queue.unavailable", level=logging.ERROR, error=str(e))
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Queue backend unavailable")


@router.get("/queues", response_model=QueueDepthsResponse)
def queue_depths(job_queue: JobQueue = Depends(get_job_queue)) -> QueueDepthsResponse:
    items = []
    try:
        for name in _QUEUE_NAMES:
            depth = job_queue.depth(name)
            items.append(
                QueueDepthItem(queue=name, ready=depth.ready, delayed=depth.delayed, dead=depth.dead)
            )
    except QueueError as e:
        raise _queue_unavailable(e) from e
    return QueueDepthsResponse(items=items)


@router.get("/queues/{queue}/dead", response_model=DeadLettersResponse)
def dead_letters_list(
    queue: str,
    limit: int = Query(default=50, ge=1, le=500),
    job_queue: JobQueue = Depends(get_job_queue),
) -> DeadLettersResponse:
    queue_name = _require_queue(queue)
    try:
        jobs = job_queue.list_dead_letters(queue_name, limit=limit)
    except QueueError as e:
        raise _queue_unavailable(e) from e
    return DeadLettersResponse(
        items=[
            DeadLetterItem(
                id=job.id,
                kind=job.kind,
                attempts=job.attempts,
                last_error=job.last_error,
                created_at=job.created_at,
                payload=job.payload,
            )
            for job in jobs
        ]
    )


@router.post("/queues/{queue}/dead/{job_id}/replay", response_model=DeadLetterReplayResponse)
def dead_letter_replay(
    queue: str,
    job_id: str,
    job_queue: JobQueue = Depends(get_job_queue),
) -> DeadLetterReplayResponse:
    queue_name = _require_queue(queue)
    try:
        job = job_queue.replay_dead_letter(queue_name, job_id)
    except QueueError as e:
        raise _queue_unavailable(e) from e
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Dead letter not found")

    log_event(logger, "ops.dead_letter.replayed", queue=queue_name, job_id=job.id, kind=job.kind)
    return DeadLetterReplayResponse(status="queued", job_id=job.id)
