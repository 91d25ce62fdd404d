from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from sqlalchemy.orm import Session

from replypilot.broker.base import QueueError
from replypilot.core.logs import log_event
from replypilot.db.session import call_after_commit
from replypilot.models.base import utcnow
from replypilot.models.conversations import Conversation, Message
from replypilot.models.customers import AiSettings
from replypilot.models.enums import JobKind, QueueName
from replypilot.worker.queue import Job, JobQueue

logger = logging.getLogger("replypilot.ai")


def debounce_seconds(ai_settings: AiSettings) -> int:
    if ai_settings.debounce_window_seconds is not None:
        seconds = ai_settings.debounce_window_seconds
    else:
        seconds = ai_settings.auto_response_delay_seconds or 0
    return max(0, int(seconds))


def schedule_conversation_ai_response(
    *,
    session: Session,
    job_queue: JobQueue,
    conversation: Conversation,
    message: Message,
    ai_settings: AiSettings | None,
) -> Job | None:
    """Schedule (or reschedule) the AI reply for a conversation.

    Each call supersedes the previous pending job: the conversation remembers
    only the newest job id, and the AI worker drops jobs that no longer match.
    That is what coalesces a burst of inbound messages into a single reply.

    The job reaches the broker only after the caller commits, so an AI worker
    always sees the pending job id it was created with.
    """
    if ai_settings is None or not ai_settings.auto_response_enabled:
        log_event(
            logger,
            "ai.schedule.skipped",
            level=logging.DEBUG,
            customer_id=str(conversation.customer_id),
            conversation_id=str(conversation.id),
        )
        return None

    delay = debounce_seconds(ai_settings)
    now = time.time()
    scheduled_for = now + delay

    job = Job(
        kind=JobKind.ai_generate.value,
        queue_name=QueueName.ai.value,
        payload={
            "customer_id": str(conversation.customer_id),
            "conversation_id": str(conversation.id),
            "latest_inbound_message_id": str(message.id),
            "lead_message": message.content,
            "delay_seconds": delay,
        },
        created_at=now,
        scheduled_for=scheduled_for,
    )

    conversation.pending_ai_job_id = job.id
    conversation.ai_debounce_until = datetime.fromtimestamp(scheduled_for, tz=UTC)
    conversation.updated_at = utcnow()
    session.flush()

    call_after_commit(session, lambda: _enqueue(job_queue, job))
    return job


def _enqueue(job_queue: JobQueue, job: Job) -> None:
    try:
        job_queue.enqueue(QueueName.ai.value, job)
    except QueueError as e:
        log_event(
            logger,
            "ai.schedule.enqueue_failed",
            level=logging.ERROR,
            customer_id=job.payload["customer_id"],
            conversation_id=job.payload["conversation_id"],
            job_id=job.id,
            error=str(e),
        )
        return
    log_event(
        logger,
        "ai.schedule.enqueued",
        level=logging.DEBUG,
        customer_id=job.payload["customer_id"],
        conversation_id=job.payload["conversation_id"],
        job_id=job.id,
        delay_seconds=job.payload["delay_seconds"],
    )
