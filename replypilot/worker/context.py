from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from replypilot.services.ai_replies import ReplyGenerator
from replypilot.services.email import EmailSender
from replypilot.sms.gateway import SmsGateway
from replypilot.worker.queue import JobQueue


@dataclass(frozen=True)
class WorkerContext:
    gateway: SmsGateway
    job_queue: JobQueue
    session_factory: sessionmaker
    reply_generator: ReplyGenerator | None = None
    email_sender: EmailSender | None = None
    frontend_url: str = ""
