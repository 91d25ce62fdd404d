from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any

from replypilot.broker.base import QueueError
from replypilot.core.logs import log_event
from replypilot.core.metrics import observe_job
from replypilot.worker.errors import PermanentJobError
from replypilot.worker.queue import InvalidJobError, Job, JobQueue

logger = logging.getLogger("replypilot.worker")

JobHandler = Callable[[Job], Any]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 1
    base_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 60.0
    dead_letter: bool = True

    def backoff_for(self, attempt: int) -> float:
        return min(self.max_backoff_seconds, self.base_backoff_seconds * (2 ** max(0, attempt - 1)))


@dataclass(frozen=True)
class QueueWorkerConfig:
    queue_name: str
    handler: JobHandler
    concurrency: int = 1
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    poll_timeout_seconds: int = 5
    idle_backoff_seconds: float = 1.0
    promote_interval_seconds: float = 0.5


@dataclass(frozen=True)
class JobOutcome:
    job_id: str
    success: bool
    duration_ms: int
    error: str | None = None
    retried: bool = False
    dead_lettered: bool = False


def completed_channel(queue_name: str) -> str:
    return f"queue:{queue_name}:completed"


def failed_channel(queue_name: str) -> str:
    return f"queue:{queue_name}:failed"


def result_success(result: object) -> bool:
    if result is None:
        return True
    if isinstance(result, dict):
        return bool(result.get("success", True))
    success = getattr(result, "success", None)
    if success is None:
        return True
    return bool(success)


class WorkerPool:
    """Runs `concurrency` consumer threads per queue plus one delayed-job promoter.

    A handler exception never escapes a consumer loop: it is logged, published
    on `queue:<name>:failed`, then retried or dead-lettered per the queue's
    RetryPolicy, and the consumer moves on to the next job.
    """

    def __init__(
        self,
        *,
        job_queue: JobQueue,
        configs: list[QueueWorkerConfig],
        clock: Callable[[], float] = time.time,
    ) -> None:
        names = [c.queue_name for c in configs]
        if len(set(names)) != len(names):
            raise ValueError("each queue may only be configured once")
        self._job_queue = job_queue
        self._configs = {c.queue_name: c for c in configs}
        self._clock = clock
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._active: dict[str, int] = {name: 0 for name in self._configs}
        self._threads: list[threading.Thread] = []

    @property
    def configs(self) -> dict[str, QueueWorkerConfig]:
        return dict(self._configs)

    def active_jobs(self, queue_name: str) -> int:
        with self._lock:
            return self._active.get(queue_name, 0)

    def start(self) -> None:
        if self._threads:
            raise RuntimeError("worker pool already started")
        for config in self._configs.values():
            log_event(
                logger,
                "worker.queue.starting",
                queue=config.queue_name,
                concurrency=config.concurrency,
                max_attempts=config.retry.max_attempts,
            )
            for slot in range(config.concurrency):
                self._spawn(f"{config.queue_name}-consumer-{slot}", self._consume_loop, config)
            self._spawn(f"{config.queue_name}-promoter", self._promote_loop, config)

    def stop(self) -> None:
        if not self._stop.is_set():
            log_event(logger, "worker.stopping")
        self._stop.set()

    def join(self, timeout: float | None = None) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)

    def run_forever(self) -> None:
        self.start()
        try:
            while not self._stop.wait(1.0):
                pass
        finally:
            self.stop()
            self.join()
            log_event(logger, "worker.stopped")

    def _spawn(self, name: str, target: Callable[[QueueWorkerConfig], None], config: QueueWorkerConfig) -> None:
        thread = threading.Thread(target=target, args=(config,), name=name, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _consume_loop(self, config: QueueWorkerConfig) -> None:
        while not self._stop.is_set():
            try:
                ran = self.poll_once(config.queue_name)
            except QueueError as e:
                log_event(
                    logger,
                    "worker.queue.unavailable",
                    level=logging.ERROR,
                    queue=config.queue_name,
                    error=str(e),
                )
                ran = False
            if not ran:
                self._stop.wait(config.idle_backoff_seconds)

    def _promote_loop(self, config: QueueWorkerConfig) -> None:
        while not self._stop.is_set():
            try:
                moved = self._job_queue.promote_due(config.queue_name, now_ts=self._clock())
            except QueueError as e:
                log_event(
                    logger,
                    "worker.promote.failed",
                    level=logging.ERROR,
                    queue=config.queue_name,
                    error=str(e),
                )
                moved = 0
            if moved:
                log_event(
                    logger,
                    "worker.promote.moved",
                    level=logging.DEBUG,
                    queue=config.queue_name,
                    count=moved,
                )
            self._stop.wait(config.promote_interval_seconds)

    def poll_once(self, queue_name: str) -> bool:
        """Dequeue and run at most one job. Returns False when the queue was empty."""
        config = self._configs[queue_name]
        try:
            job = self._job_queue.dequeue_blocking(queue_name, config.poll_timeout_seconds)
        except InvalidJobError as e:
            log_event(logger, "worker.job.invalid", level=logging.ERROR, queue=queue_name, error=str(e))
            return True
        if job is None:
            return False

        if not job.is_due(now_ts=self._clock()):
            # Pushed straight onto the ready list with a future deadline; park it
            # in the delayed set instead of holding this slot until it is due.
            self._job_queue.enqueue(queue_name, job)
            return True

        self.process_job(queue_name, job)
        return True

    def process_job(self, queue_name: str, job: Job) -> JobOutcome:
        config = self._configs[queue_name]
        with self._lock:
            self._active[queue_name] += 1
        start = time.monotonic()
        try:
            log_event(
                logger,
                "worker.job.started",
                level=logging.DEBUG,
                queue=queue_name,
                job_id=job.id,
                kind=job.kind,
                attempt=job.attempts + 1,
            )
            try:
                result = config.handler(job)
            except Exception as e:  # noqa: BLE001
                duration_ms = int((time.monotonic() - start) * 1000)
                return self._handle_failure(config, job, e, duration_ms)

            duration_ms = int((time.monotonic() - start) * 1000)
            success = result_success(result)
            log_event(
                logger,
                "worker.job.completed",
                queue=queue_name,
                job_id=job.id,
                kind=job.kind,
                duration_ms=duration_ms,
                success=success,
            )
            observe_job(queue=queue_name, outcome="succeeded" if success else "failed", duration_ms=duration_ms)
            self._publish(
                completed_channel(queue_name),
                {
                    "job_id": job.id,
                    "kind": job.kind,
                    "customer_id": job.customer_id,
                    "duration_ms": duration_ms,
                    "success": success,
                },
            )
            return JobOutcome(job_id=job.id, success=success, duration_ms=duration_ms)
        finally:
            with self._lock:
                self._active[queue_name] -= 1

    def _handle_failure(
        self, config: QueueWorkerConfig, job: Job, exc: Exception, duration_ms: int
    ) -> JobOutcome:
        error = str(exc) or exc.__class__.__name__
        attempts = job.attempts + 1
        permanent = isinstance(exc, PermanentJobError)
        will_retry = not permanent and attempts < config.retry.max_attempts

        log_event(
            logger,
            "worker.job.failed",
            level=logging.ERROR,
            queue=config.queue_name,
            job_id=job.id,
            kind=job.kind,
            duration_ms=duration_ms,
            attempt=attempts,
            will_retry=will_retry,
            error=error,
        )
        self._publish(
            failed_channel(config.queue_name),
            {
                "job_id": job.id,
                "kind": job.kind,
                "customer_id": job.customer_id,
                "duration_ms": duration_ms,
                "error": error,
                "attempt": attempts,
                "will_retry": will_retry,
            },
        )

        failed = replace(job, attempts=attempts, last_error=error)
        retried = dead_lettered = False
        try:
            if will_retry:
                backoff = config.retry.backoff_for(attempts)
                self._job_queue.enqueue(
                    config.queue_name, replace(failed, scheduled_for=self._clock() + backoff)
                )
                retried = True
            elif config.retry.dead_letter:
                self._job_queue.dead_letter(failed, error=error)
                dead_lettered = True
        except QueueError as e:
            log_event(
                logger,
                "worker.job.requeue_failed",
                level=logging.ERROR,
                queue=config.queue_name,
                job_id=job.id,
                error=str(e),
            )

        outcome = "retried" if retried else "dead_lettered" if dead_lettered else "failed"
        observe_job(queue=config.queue_name, outcome=outcome, duration_ms=duration_ms)
        return JobOutcome(
            job_id=job.id,
            success=False,
            duration_ms=duration_ms,
            error=error,
            retried=retried,
            dead_lettered=dead_lettered,
        )

    def _publish(self, channel: str, message: dict[str, Any]) -> None:
        try:
            self._job_queue.publish(channel, message)
        except QueueError as e:
            log_event(logger, "worker.event.publish_failed", level=logging.WARNING, channel=channel, error=str(e))
