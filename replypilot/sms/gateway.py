from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from replypilot.core.logs import log_event
from replypilot.core.metrics import observe_sms_send
from replypilot.models.customers import Customer, FonecloudNumber, PhoneNumber
from replypilot.models.enums import JobKind, QueueName
from replypilot.sms.contract import (
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
from replypilot.sms.registry import ProviderRegistry
from replypilot.worker.queue import Job, JobQueue

logger = logging.getLogger("replypilot.sms")

FONECLOUD = "fonecloud"


class SmsGateway:
    """Single entry point for messaging; routes every operation to the customer's provider."""

    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        job_queue: JobQueue,
        session_factory: sessionmaker,
        default_provider: str = "twilio",
    ) -> None:
        self._registry = registry
        self._job_queue = job_queue
        self._session_factory = session_factory
        self._default_provider = default_provider

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def default_provider(self) -> str:
        return self._default_provider

    def resolve_provider_id(self, customer_id: UUID | None) -> str:
        if customer_id is None:
            return self._default_provider
        session = self._session_factory()
        try:
            provider_id = session.execute(
                select(Customer.sms_provider).where(Customer.id == customer_id)
            ).scalar_one_or_none()
        finally:
            session.close()
        return provider_id or self._default_provider

    def require_provider(self, provider_id: str | None) -> SmsProvider:
        return self._registry.require(provider_id or self._default_provider)

    def get_from_number_for_customer(self, customer_id: UUID | None) -> str | None:
        if customer_id is None:
            return None
        session = self._session_factory()
        try:
            return _lookup_from_number(session=session, customer_id=customer_id)
        finally:
            session.close()

    def send(
        self,
        *,
        customer_id: UUID | None,
        to: str,
        body: str,
        from_: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> SendResult:
        provider_id = self.resolve_provider_id(customer_id)
        provider = self._registry.require(provider_id)

        sender = from_ or self.get_from_number_for_customer(customer_id)
        log_event(
            logger,
            "sms.send.dispatching",
            level=logging.DEBUG,
            provider=provider_id,
            customer_id=str(customer_id) if customer_id else None,
            to=to,
        )

        result = provider.send(SendParams(to=to, body=body, from_=sender, options=dict(options or {})))

        observe_sms_send(provider=provider_id, success=result.success)
        log_event(
            logger,
            "sms.send.result",
            level=logging.INFO if result.success else logging.WARNING,
            provider=provider_id,
            customer_id=str(customer_id) if customer_id else None,
            to=to,
            success=result.success,
            provider_message_id=result.provider_message_id,
            error=result.error,
        )
        return result

    def queue_sms(
        self,
        *,
        customer_id: UUID | None,
        to: str,
        body: str,
        from_: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        job_options = dict(options or {})
        if from_ is not None:
            job_options["from"] = from_
        job = self._job_queue.enqueue(
            QueueName.sms.value,
            Job(
                kind=JobKind.sms_send.value,
                queue_name=QueueName.sms.value,
                payload={
                    "customer_id": str(customer_id) if customer_id else None,
                    "to": to,
                    "body": body,
                    "options": job_options,
                },
            ),
        )
        log_event(
            logger,
            "sms.send.queued",
            level=logging.DEBUG,
            customer_id=str(customer_id) if customer_id else None,
            to=to,
            job_id=job.id,
        )
        return {"queued": True, "job_id": job.id}

    def handle_incoming_message(self, provider_id: str | None, payload: dict[str, Any]) -> InboundResult:
        provider = self.require_provider(provider_id)
        return provider.handle_incoming(payload)

    def provision_number(
        self, *, customer_id: UUID, region_or_area_code: str | None = None
    ) -> ProvisionResult:
        provider_id = self.resolve_provider_id(customer_id)
        provider = self._registry.require(provider_id)
        result = provider.provision_number(
            ProvisionParams(customer_id=customer_id, region_or_area_code=region_or_area_code)
        )
        log_event(
            logger,
            "sms.number.provision",
            provider=provider_id,
            customer_id=str(customer_id),
            success=result.success,
            phone_number=result.phone_number,
            error=result.error,
        )
        return result

    def release_number(self, *, customer_id: UUID, phone_number: str) -> ReleaseResult:
        provider_id = self.resolve_provider_id(customer_id)
        provider = self._registry.require(provider_id)
        result = provider.release_number(
            ReleaseParams(customer_id=customer_id, phone_number=phone_number)
        )
        log_event(
            logger,
            "sms.number.release",
            provider=provider_id,
            customer_id=str(customer_id),
            phone_number=phone_number,
            success=result.success,
            error=result.error,
        )
        return result

    def verify_webhook_signature(
        self,
        provider_id: str | None,
        *,
        url: str,
        body: dict[str, Any] | str,
        signature: str,
    ) -> bool:
        provider = self.require_provider(provider_id)
        return provider.verify_webhook_signature(
            WebhookRequest(url=url, body=body, signature=signature)
        )


def _lookup_from_number(*, session: Session, customer_id: UUID) -> str | None:
    customer = session.get(Customer, customer_id)
    if customer is None:
        return None

    if customer.sms_provider == FONECLOUD:
        if customer.fonecloud_number_id is not None:
            pooled = session.get(FonecloudNumber, customer.fonecloud_number_id)
            if pooled is not None and pooled.is_active:
                return pooled.phone_number
        return customer.fonecloud_sender_id

    return (
        session.execute(
            select(PhoneNumber.phone_number)
            .where(PhoneNumber.customer_id == customer_id, PhoneNumber.is_active.is_(True))
            .order_by(PhoneNumber.created_at.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )
