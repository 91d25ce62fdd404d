from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("APP_ENV", "test")
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["PUBLIC_BASE_URL"] = "https://api.replypilot.test"
os.environ["OPS_API_TOKEN"] = "ops-test-token"
os.environ["ENABLE_PROMETHEUS_METRICS"] = "false"

from replypilot.broker.memory import MemoryQueueBackend  # noqa: E402
from replypilot.core.config import get_settings  # noqa: E402
from replypilot.models import Base  # noqa: E402
from replypilot.sms.contract import (  # noqa: E402
    InboundResult,
    ProvisionParams,
    ProvisionResult,
    ReleaseParams,
    ReleaseResult,
    SendParams,
    SendResult,
    SmsProvider,
    WebhookRequest,
)
from replypilot.sms.gateway import SmsGateway  # noqa: E402
from replypilot.sms.registry import ProviderRegistry  # noqa: E402
from replypilot.worker.queue import JobQueue  # noqa: E402


class RecordingProvider(SmsProvider):
    """In-process provider that records calls and returns canned results."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.send_result = SendResult(success=True, provider_message_id=f"{name}-msg-1", status="queued")
        self.inbound_result = InboundResult(success=True)
        self.signature_valid = True
        self.sent: list[SendParams] = []
        self.inbound: list[dict[str, Any]] = []
        self.provisioned: list[ProvisionParams] = []
        self.released: list[ReleaseParams] = []
        self.verified: list[WebhookRequest] = []

    def send(self, params: SendParams) -> SendResult:
        self.sent.append(params)
        return self.send_result

    def handle_incoming(self, payload: dict[str, Any]) -> InboundResult:
        self.inbound.append(payload)
        return self.inbound_result

    def provision_number(self, params: ProvisionParams) -> ProvisionResult:
        self.provisioned.append(params)
        return ProvisionResult(success=True, phone_number="+4512345678", sid=f"{self.name}-num")

    def release_number(self, params: ReleaseParams) -> ReleaseResult:
        self.released.append(params)
        return ReleaseResult(success=True)

    def verify_webhook_signature(self, request: WebhookRequest) -> bool:
        self.verified.append(request)
        return self.signature_valid


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def engine() -> Iterator[Engine]:
    # One shared connection so every session (and every TestClient thread) sees the same database.
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def queue_backend() -> MemoryQueueBackend:
    return MemoryQueueBackend()


@pytest.fixture()
def job_queue(queue_backend: MemoryQueueBackend) -> JobQueue:
    return JobQueue(queue_backend)


@pytest.fixture()
def make_provider() -> Callable[[str], RecordingProvider]:
    return RecordingProvider


@pytest.fixture()
def twilio_fake() -> RecordingProvider:
    return RecordingProvider("twilio")


@pytest.fixture()
def fonecloud_fake() -> RecordingProvider:
    return RecordingProvider("fonecloud")


@pytest.fixture()
def registry(twilio_fake: RecordingProvider, fonecloud_fake: RecordingProvider) -> ProviderRegistry:
    reg = ProviderRegistry()
    reg.register("twilio", twilio_fake)
    reg.register("fonecloud", fonecloud_fake)
    return reg


@pytest.fixture()
def gateway(registry: ProviderRegistry, job_queue: JobQueue, session_factory: sessionmaker) -> SmsGateway:
    return SmsGateway(
        registry=registry,
        job_queue=job_queue,
        session_factory=session_factory,
        default_provider="twilio",
    )
