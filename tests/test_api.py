from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from twilio.request_validator import RequestValidator

from replypilot.core.config import get_settings
from replypilot.db.session import get_session
from replypilot.main import create_app
from replypilot.models.conversations import Conversation
from replypilot.models.customers import Customer, PhoneNumber
from replypilot.sms.contract import InboundResult
from replypilot.sms.gateway import SmsGateway
from replypilot.sms.providers.twilio import TwilioConfig, TwilioProvider
from replypilot.sms.registry import ProviderRegistry
from replypilot.worker.queue import Job, JobQueue

OPS_HEADERS = {"x-ops-token": "ops-test-token"}


@pytest.fixture()
def api(gateway: SmsGateway, job_queue: JobQueue, session_factory: sessionmaker) -> TestClient:
    app = create_app(job_queue=job_queue, sms_gateway=gateway)

    def _session() -> Iterator[Session]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_session] = _session
    return TestClient(app)


def test_healthz_ok(api: TestClient) -> None:
    res = api.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}
    assert res.headers["x-request-id"]
    assert res.headers["x-content-type-options"] == "nosniff"


def test_readyz_checks_database_and_queue(api: TestClient) -> None:
    res = api.get("/readyz")
    assert res.status_code == 200
    assert res.json() == {"status": "ready"}


def test_request_id_is_echoed(api: TestClient) -> None:
    res = api.get("/healthz", headers={"x-request-id": "req-abc"})
    assert res.headers["x-request-id"] == "req-abc"


def test_webhook_unknown_provider(api: TestClient) -> None:
    res = api.post("/webhooks/sms/carrier-pigeon", json={"from": "+45"})
    assert res.status_code == 404


def test_webhook_rejects_bad_signature(api: TestClient, twilio_fake) -> None:
    twilio_fake.signature_valid = False

    res = api.post("/webhooks/sms/twilio", data={"From": "+45"}, headers={"X-Twilio-Signature": "nope"})

    assert res.status_code == 403
    assert twilio_fake.inbound == []
    assert twilio_fake.verified[0].signature == "nope"
    assert twilio_fake.verified[0].url == "https://api.replypilot.test/webhooks/sms/twilio"


def test_webhook_json_provider(api: TestClient, fonecloud_fake) -> None:
    res = api.post(
        "/webhooks/sms/fonecloud?account=7",
        content=b'{"from": "+4512345678", "text": "Hej"}',
        headers={"content-type": "application/json", "X-Signature": "sig"},
    )

    assert res.status_code == 200
    assert res.json()["success"] is True
    assert fonecloud_fake.inbound == [{"from": "+4512345678", "text": "Hej"}]
    verified = fonecloud_fake.verified[0]
    assert verified.url == "https://api.replypilot.test/webhooks/sms/fonecloud?account=7"
    assert verified.body == '{"from": "+4512345678", "text": "Hej"}'
    assert verified.signature == "sig"


def test_webhook_reports_unhandled_payload(api: TestClient, fonecloud_fake) -> None:
    fonecloud_fake.inbound_result = InboundResult(success=False, error="not supported")

    res = api.post("/webhooks/sms/fonecloud", json={"x": 1})

    assert res.status_code == 422
    assert res.json()["error"] == "not supported"


def test_webhook_rejects_non_object_json(api: TestClient) -> None:
    res = api.post("/webhooks/sms/fonecloud", json=[1, 2])
    assert res.status_code == 400


def test_twilio_webhook_end_to_end(
    db_session: Session, session_factory: sessionmaker, job_queue: JobQueue
) -> None:
    customer = Customer(name="Snedker Holm")
    db_session.add(customer)
    db_session.flush()
    db_session.add(PhoneNumber(customer_id=customer.id, phone_number="+4570000000"))
    db_session.commit()

    registry = ProviderRegistry()
    registry.register(
        "twilio",
        TwilioProvider(
            TwilioConfig(account_sid="AC1", auth_token="secret"),
            session_factory=session_factory,
            job_queue=job_queue,
        ),
    )
    gateway = SmsGateway(registry=registry, job_queue=job_queue, session_factory=session_factory)
    client = TestClient(create_app(job_queue=job_queue, sms_gateway=gateway))

    params = {"From": "+4512345678", "To": "+4570000000", "Body": "Hej", "MessageSid": "SM9"}
    url = "https://api.replypilot.test/webhooks/sms/twilio"
    signature = RequestValidator("secret").compute_signature(url, params)

    res = client.post("/webhooks/sms/twilio", data=params, headers={"X-Twilio-Signature": signature})

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("application/xml")
    assert "<Response" in res.text
    conversation = db_session.execute(select(Conversation)).scalar_one()
    assert conversation.lead_phone == "+4512345678"


def test_ops_requires_token(api: TestClient) -> None:
    assert api.get("/ops/queues").status_code == 401
    assert api.get("/ops/queues", headers={"x-ops-token": "wrong"}).status_code == 401


def test_ops_disabled_without_configured_token(api: TestClient, monkeypatch) -> None:
    monkeypatch.setenv("OPS_API_TOKEN", "")
    get_settings.cache_clear()

    assert api.get("/ops/queues", headers=OPS_HEADERS).status_code == 503


def test_ops_queue_depths(api: TestClient, job_queue: JobQueue) -> None:
    job_queue.enqueue("sms_queue", Job(kind="sms_send", queue_name="sms_queue", payload={}))

    res = api.get("/ops/queues", headers=OPS_HEADERS)

    assert res.status_code == 200
    items = {item["queue"]: item for item in res.json()["items"]}
    assert set(items) == {"ai_queue", "sms_queue", "notification_queue"}
    assert items["sms_queue"]["ready"] == 1


def test_ops_dead_letter_list_and_replay(api: TestClient, job_queue: JobQueue) -> None:
    job = Job(kind="sms_send", queue_name="sms_queue", payload={"to": "+45"}, attempts=1)
    job_queue.dead_letter(job, error="carrier down")

    listed = api.get("/ops/queues/sms_queue/dead", headers=OPS_HEADERS)
    assert listed.status_code == 200
    items = listed.json()["items"]
    assert [i["id"] for i in items] == [job.id]
    assert items[0]["last_error"] == "carrier down"
    assert items[0]["payload"] == {"to": "+45"}

    replay = api.post(f"/ops/queues/sms_queue/dead/{job.id}/replay", headers=OPS_HEADERS)
    assert replay.status_code == 200
    assert replay.json() == {"status": "queued", "job_id": job.id}
    assert job_queue.depth("sms_queue").ready == 1

    missing = api.post(f"/ops/queues/sms_queue/dead/{job.id}/replay", headers=OPS_HEADERS)
    assert missing.status_code == 404


def test_ops_unknown_queue(api: TestClient) -> None:
    assert api.get("/ops/queues/email_queue/dead", headers=OPS_HEADERS).status_code == 404
