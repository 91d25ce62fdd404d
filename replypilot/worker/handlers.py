from __future__ import annotations

from typing import Any

from replypilot.models.enums import JobKind
from replypilot.worker.context import WorkerContext
from replypilot.worker.errors import PermanentJobError
from replypilot.worker.jobs.ai_generate import ai_generate
from replypilot.worker.jobs.notification_send import notification_send
from replypilot.worker.jobs.sms_send import sms_send
from replypilot.worker.queue import Job


def handle_job(context: WorkerContext, job: Job) -> Any:
    if job.kind == JobKind.sms_send:
        return sms_send(context=context, payload=job.payload)
    if job.kind == JobKind.ai_generate:
        return ai_generate(context=context, job_id=job.id, payload=job.payload)
    if job.kind == JobKind.notification_send:
        return notification_send(context=context, payload=job.payload)

    raise PermanentJobError(f"Job kind not implemented: {job.kind}")
