from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import orjson
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from twilio.base.exceptions import TwilioRestException
from twilio.request_validator import RequestValidator

from replypilot.broker.memory import MemoryQueueBackend
from replypilot.models.conversations import Conversation, Message
from replypilot.models.customers import Customer, PhoneNumber
from replypilot.sms.contract import ProvisionParams, ReleaseParams, SendParams, WebhookRequest
from replypilot.sms.errors import ProviderConfigurationError
from replypilot.sms.providers.twilio import TwilioConfig, TwilioProvider
from replypilot.worker.queue import JobQueue

AUTH_TOKEN = "twilio-auth-token"


class _FakeMessages:
    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.error: Exception | None = None

    def create(self, **params: Any) -> SimpleNamespace:
        if self.error is not None:
            raise self.error
        self.created.append(params)
        return SimpleNamespace(sid="SM123", status="queued")


class _FakeIncomingNumbers:
    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.deleted: list[str] = []
        self.delete_error: Exception | None = None

    def create(self, **params: Any) -> SimpleNamespace:
        self.created.append(params)
        return SimpleNamespace(sid="PN555", friendly_name="Builder line")

    def __call__(self, sid: str) -> SimpleNamespace:
        def delete() -> bool:
            if self.delete_error is not None:
                raise self.delete_error
            self.deleted.append(sid)
            return True

        return SimpleNamespace(delete=delete)


class _FakeClient:
    def __init__(self, available: list[str]) -> None:
        self.messages = _FakeMessages()
        self.incoming_phone_numbers = _FakeIncomingNumbers()
        self._available = available
        self.searches: list[tuple[str, dict[str, Any]]] = []

    def available_phone_numbers(self, country: str) -> SimpleNamespace:
        def list_(**params: Any) -> list[SimpleNamespace]:
            self.searches.append((country, params))
            return [SimpleNamespace(phone_number=n) for n in self._available]

        return SimpleNamespace(mobile=SimpleNamespace(list=list_))


@pytest.fixture()
def client() -> _FakeClient:
    return _FakeClient(available=["+4591000000"])


def _provider(
    session_factory: sessionmaker, job_queue: JobQueue, client: _FakeClient, **config: Any
) -> TwilioProvider:
    cfg: dict[str, Any] = {
        "account_sid": "AC123",
        "auth_token": AUTH_TOKEN,
        "sms_webhook_url": "https://api.replypilot.test/webhooks/sms/twilio",
    }
    cfg.update(config)
    return TwilioProvider(
        TwilioConfig(**cfg),
        session_factory=session_factory,
        job_queue=job_queue,
        client_factory=lambda _config: client,
    )


def test_send_uses_messaging_service_when_configured(session_factory, job_queue, client) -> None:  # type: ignore[no-untyped-def]
    provider = _provider(session_factory, job_queue, client, messaging_service_sid="MG1")

    result = provider.send(SendParams(to="+4512345678", body="Hej"))

    assert result.success is True
    assert result.provider_message_id == "SM123"
    assert client.messages.created == [{"to": "+4512345678", "body": "Hej", "messaging_service_sid": "MG1"}]


def test_send_without_sender_fails(session_factory, job_queue, client) -> None:  # type: ignore[no-untyped-def]
    result = _provider(session_factory, job_queue, client).send(SendParams(to="+45", body="x"))

    assert result.success is False
    assert client.messages.created == []


def test_send_maps_carrier_errors(session_factory, job_queue, client) -> None:  # type: ignore[no-untyped-def]
    client.messages.error = TwilioRestException(400, "/Messages", msg="Invalid 'To' number", code=21211)

    result = _provider(session_factory, job_queue, client).send(SendParams(to="+45", body="x", from_="+4570"))

    assert result.success is False
    assert result.code == 21211
    assert result.error == "Invalid 'To' number"


def test_missing_credentials_is_configuration_error(session_factory, job_queue, client) -> None:  # type: ignore[no-untyped-def]
    provider = _provider(session_factory, job_queue, client, account_sid="")
    with pytest.raises(ProviderConfigurationError):
        provider.send(SendParams(to="+45", body="x", from_="+4570"))


def test_signature_validation(session_factory, job_queue, client) -> None:  # type: ignore[no-untyped-def]
    provider = _provider(session_factory, job_queue, client)
    url = "https://api.replypilot.test/webhooks/sms/twilio"
    params = {"From": "+4512345678", "To": "+4570000000", "Body": "Hej", "MessageSid": "SM1"}
    signature = RequestValidator(AUTH_TOKEN).compute_signature(url, params)

    assert provider.verify_webhook_signature(WebhookRequest(url=url, body=params, signature=signature)) is True
    assert provider.verify_webhook_signature(WebhookRequest(url=url, body=params, signature="forged")) is False
    assert provider.verify_webhook_signature(WebhookRequest(url=url, body=params, signature="")) is False

    unsigned = _provider(session_factory, job_queue, client, auth_token="")
    assert unsigned.verify_webhook_signature(WebhookRequest(url=url, body=params, signature=signature)) is False


def test_handle_incoming_runs_pipeline(
    db_session: Session,
    session_factory: sessionmaker,
    job_queue: JobQueue,
    queue_backend: MemoryQueueBackend,
    client: _FakeClient,
) -> None:
    customer = Customer(name="Elektriker Berg")
    db_session.add(customer)
    db_session.flush()
    db_session.add(PhoneNumber(customer_id=customer.id, phone_number="+4570000000"))
    db_session.commit()

    result = _provider(session_factory, job_queue, client).handle_incoming(
        {"From": "+4512345678", "To": "+4570000000", "Body": "Hej", "MessageSid": "SM1"}
    )

    assert result.success is True
    conversation = db_session.execute(select(Conversation)).scalar_one()
    assert conversation.id == result.conversation_id
    assert conversation.customer_id == customer.id
    message = db_session.get(Message, result.message_id)
    assert message.provider_message_id == "SM1"
    kinds = [
        orjson.loads(data)["payload"]["notification_type"]
        for data in iter(lambda: queue_backend.pop_blocking(queue_name="notification_queue", timeout_seconds=0), None)
    ]
    assert kinds == ["new_lead", "new_message"]


def test_handle_incoming_unknown_number(session_factory, job_queue, client) -> None:  # type: ignore[no-untyped-def]
    result = _provider(session_factory, job_queue, client).handle_incoming(
        {"From": "+4512345678", "To": "+4579999999", "Body": "Hej"}
    )
    assert result.success is False

    missing = _provider(session_factory, job_queue, client).handle_incoming({"Body": "Hej"})
    assert missing.success is False


def test_provision_and_release(db_session: Session, session_factory, job_queue, client) -> None:  # type: ignore[no-untyped-def]
    customer = Customer(name="Tag & Facade")
    db_session.add(customer)
    db_session.commit()
    provider = _provider(session_factory, job_queue, client, number_country="DK")

    provisioned = provider.provision_number(ProvisionParams(customer_id=customer.id))

    assert provisioned.success is True
    assert provisioned.phone_number == "+4591000000"
    assert client.searches[0][0] == "DK"
    assert client.incoming_phone_numbers.created[0]["sms_url"] == "https://api.replypilot.test/webhooks/sms/twilio"
    stored = db_session.execute(select(PhoneNumber)).scalar_one()
    assert stored.provider_sid == "PN555"

    client.incoming_phone_numbers.delete_error = TwilioRestException(404, "/IncomingPhoneNumbers", msg="gone")
    released = provider.release_number(ReleaseParams(customer_id=customer.id, phone_number="+4591000000"))

    assert released.success is True
    db_session.expire_all()
    assert db_session.get(PhoneNumber, stored.id).is_active is False


def test_provision_with_empty_inventory(db_session: Session, session_factory, job_queue) -> None:  # type: ignore[no-untyped-def]
    customer = Customer(name="Ingen numre")
    db_session.add(customer)
    db_session.commit()

    result = _provider(session_factory, job_queue, _FakeClient(available=[])).provision_number(
        ProvisionParams(customer_id=customer.id, region_or_area_code="33")
    )

    assert result.success is False
    assert result.error == "No phone numbers available"
