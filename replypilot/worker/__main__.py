from __future__ import annotations

import argparse
import logging
import signal

from replypilot.broker.factory import build_queue_backend
from replypilot.core.config import get_settings
from replypilot.core.http import build_http_client
from replypilot.core.logs import configure_logging, log_event
from replypilot.db.session import get_sessionmaker
from replypilot.services.ai_replies import HttpReplyGenerator
from replypilot.services.email import HttpEmailSender
from replypilot.sms.factory import build_sms_gateway
from replypilot.worker.context import WorkerContext
from replypilot.worker.queue import JobQueue
from replypilot.worker.runner import WORKER_TYPES, build_worker_pool

logger = logging.getLogger("replypilot.worker")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="replypilot-worker")
    parser.add_argument("worker_type", nargs="?", default="all", choices=["all", *WORKER_TYPES])
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    job_queue = JobQueue(build_queue_backend(settings))
    session_factory = get_sessionmaker()
    gateway = build_sms_gateway(settings=settings, session_factory=session_factory, job_queue=job_queue)

    reply_generator = None
    if settings.AI_REPLY_ENDPOINT_URL:
        reply_generator = HttpReplyGenerator(
            endpoint_url=settings.AI_REPLY_ENDPOINT_URL,
            http_client=build_http_client(timeout=settings.AI_REPLY_TIMEOUT_SECONDS),
        )

    email_sender = None
    if settings.EMAIL_API_KEY:
        email_sender = HttpEmailSender(
            endpoint_url=settings.EMAIL_API_URL,
            api_key=settings.EMAIL_API_KEY,
            from_address=settings.EMAIL_FROM_ADDRESS,
            from_name=settings.EMAIL_FROM_NAME,
            http_client=build_http_client(timeout=settings.EMAIL_TIMEOUT_SECONDS),
        )

    context = WorkerContext(
        gateway=gateway,
        job_queue=job_queue,
        session_factory=session_factory,
        reply_generator=reply_generator,
        email_sender=email_sender,
        frontend_url=settings.FRONTEND_URL,
    )
    pool = build_worker_pool(settings=settings, context=context, worker_type=args.worker_type)

    def _shutdown(signum: int, _frame: object) -> None:
        log_event(logger, "worker.signal", signal=signal.Signals(signum).name)
        pool.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    log_event(logger, "worker.starting", worker_type=args.worker_type)
    try:
        pool.run_forever()
    finally:
        job_queue.backend.close()


if __name__ == "__main__":
    main()
