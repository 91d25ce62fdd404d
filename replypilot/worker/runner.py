from __future__ import annotations

from functools import partial

from replypilot.core.config import Settings
from replypilot.models.enums import QueueName
from replypilot.worker.context import WorkerContext
from replypilot.worker.handlers import handle_job
from replypilot.worker.scheduler import QueueWorkerConfig, RetryPolicy, WorkerPool

WORKER_TYPES: dict[str, QueueName] = {
    "ai": QueueName.ai,
    "sms": QueueName.sms,
    "notifications": QueueName.notifications,
}


def build_worker_configs(*, settings: Settings, context: WorkerContext) -> dict[str, QueueWorkerConfig]:
    retry = RetryPolicy(
        max_attempts=settings.WORKER_MAX_ATTEMPTS,
        base_backoff_seconds=settings.WORKER_RETRY_BASE_SECONDS,
        max_backoff_seconds=settings.WORKER_RETRY_MAX_SECONDS,
    )
    concurrency = {
        "ai": settings.WORKER_AI_CONCURRENCY,
        "sms": settings.WORKER_SMS_CONCURRENCY,
        "notifications": settings.WORKER_NOTIFICATION_CONCURRENCY,
    }
    handler = partial(handle_job, context)
    return {
        worker_type: QueueWorkerConfig(
            queue_name=queue.value,
            handler=handler,
            concurrency=concurrency[worker_type],
            retry=retry,
            poll_timeout_seconds=settings.WORKER_POLL_TIMEOUT_SECONDS,
            idle_backoff_seconds=settings.WORKER_IDLE_BACKOFF_SECONDS,
        )
        for worker_type, queue in WORKER_TYPES.items()
    }


def build_worker_pool(*, settings: Settings, context: WorkerContext, worker_type: str = "all") -> WorkerPool:
    configs = build_worker_configs(settings=settings, context=context)
    if worker_type == "all":
        selected = list(configs.values())
    elif worker_type in configs:
        selected = [configs[worker_type]]
    else:
        available = ", ".join(["all", *configs])
        raise ValueError(f"Unknown worker type: {worker_type}. Available: {available}")
    return WorkerPool(job_queue=context.job_queue, configs=selected)
