from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.request_validator import RequestValidator
from twilio.rest import Client

from replypilot.core.logs import log_event
from replypilot.db.session import session_scope
from replypilot.models.base import utcnow
from replypilot.models.customers import PhoneNumber
from replypilot.sms.contract import (
    InboundMessage,
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
from replypilot.sms.errors import ProviderConfigurationError
from replypilot.sms.inbound import apply_inbound_message
from replypilot.worker.queue import JobQueue

logger = logging.getLogger("replypilot.sms.twilio")


@dataclass(frozen=True)
class TwilioConfig:
    account_sid: str
    auth_token: str
    messaging_service_sid: str = ""
    number_country: str = "DK"
    # Where Twilio should POST inbound SMS for numbers we provision.
    sms_webhook_url: str = ""


class TwilioProvider(SmsProvider):
    def __init__(
        self,
        config: TwilioConfig,
        *,
        session_factory: sessionmaker,
        job_queue: JobQueue,
        client_factory: Callable[[TwilioConfig], Client] | None = None,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._job_queue = job_queue
        self._client_factory = client_factory or _default_client
        self._client: Client | None = None

    def _get_client(self) -> Client:
        if self._client is None:
            if not self._config.account_sid or not self._config.auth_token:
                raise ProviderConfigurationError(
                    "Twilio credentials are not configured (TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN)"
                )
            self._client = self._client_factory(self._config)
        return self._client

    def send(self, params: SendParams) -> SendResult:
        client = self._get_client()
        create_params: dict[str, Any] = {"to": params.to, "body": params.body}
        if self._config.messaging_service_sid:
            create_params["messaging_service_sid"] = self._config.messaging_service_sid
        if params.from_:
            create_params["from_"] = params.from_
        if not self._config.messaging_service_sid and not params.from_:
            return SendResult(success=False, error="No sender number or messaging service configured")

        try:
            message = client.messages.create(**create_params)
        except TwilioRestException as e:
            log_event(
                logger,
                "twilio.send.failed",
                level=logging.ERROR,
                to=params.to,
                code=e.code,
                error=e.msg,
            )
            return SendResult(success=False, error=str(e.msg), code=e.code)
        except (TwilioException, OSError) as e:
            log_event(logger, "twilio.send.failed", level=logging.ERROR, to=params.to, error=str(e))
            return SendResult(success=False, error=str(e))

        return SendResult(
            success=True,
            provider_message_id=message.sid,
            status=str(message.status) if message.status is not None else None,
        )

    def handle_incoming(self, payload: dict[str, Any]) -> InboundResult:
        from_ = (payload.get("From") or "").strip()
        to = (payload.get("To") or "").strip()
        body = payload.get("Body") or ""
        message_sid = payload.get("MessageSid")
        if not from_ or not to:
            return InboundResult(success=False, error="Inbound payload is missing From/To")

        log_event(logger, "twilio.inbound.received", lead_phone=from_, to=to, message_sid=message_sid)

        with session_scope(self._session_factory) as session:
            number = (
                session.execute(
                    select(PhoneNumber)
                    .where(PhoneNumber.phone_number == to, PhoneNumber.is_active.is_(True))
                    .limit(1)
                )
                .scalars()
                .first()
            )
            if number is None:
                log_event(logger, "twilio.inbound.unknown_number", level=logging.WARNING, to=to)
                return InboundResult(success=False, error=f"No active customer number for {to}")

            return apply_inbound_message(
                session=session,
                job_queue=self._job_queue,
                message=InboundMessage(
                    customer_id=number.customer_id,
                    from_=from_,
                    to=to,
                    body=body,
                    provider_message_id=message_sid,
                    phone_number_id=number.id,
                ),
            )

    def provision_number(self, params: ProvisionParams) -> ProvisionResult:
        client = self._get_client()
        search: dict[str, Any] = {
            "limit": 1,
            "sms_enabled": True,
            "voice_enabled": True,
            "mms_enabled": False,
        }
        if params.region_or_area_code:
            search["area_code"] = params.region_or_area_code

        try:
            # Mobile numbers, so GSM call-forwarding codes work on them.
            available = client.available_phone_numbers(self._config.number_country).mobile.list(**search)
            if not available:
                return ProvisionResult(success=False, error="No phone numbers available")
            phone_number = available[0].phone_number

            create_params: dict[str, Any] = {"phone_number": phone_number}
            if self._config.sms_webhook_url:
                create_params["sms_url"] = self._config.sms_webhook_url
                create_params["sms_method"] = "POST"
            purchased = client.incoming_phone_numbers.create(**create_params)
        except (TwilioException, OSError) as e:
            log_event(
                logger,
                "twilio.provision.failed",
                level=logging.ERROR,
                customer_id=str(params.customer_id),
                error=str(e),
            )
            return ProvisionResult(success=False, error=str(e))

        with session_scope(self._session_factory) as session:
            session.add(
                PhoneNumber(
                    customer_id=params.customer_id,
                    phone_number=phone_number,
                    provider_sid=purchased.sid,
                    friendly_name=purchased.friendly_name,
                    is_active=True,
                )
            )

        return ProvisionResult(success=True, phone_number=phone_number, sid=purchased.sid)

    def release_number(self, params: ReleaseParams) -> ReleaseResult:
        with session_scope(self._session_factory) as session:
            number = (
                session.execute(
                    select(PhoneNumber).where(
                        PhoneNumber.customer_id == params.customer_id,
                        PhoneNumber.phone_number == params.phone_number,
                        PhoneNumber.is_active.is_(True),
                    )
                )
                .scalars()
                .first()
            )
            if number is None:
                return ReleaseResult(success=False, error="Phone number not found or already released")

            if number.provider_sid:
                try:
                    self._get_client().incoming_phone_numbers(number.provider_sid).delete()
                except (TwilioException, OSError) as e:
                    # The number is still retired locally; carrier cleanup can be redone by hand.
                    log_event(
                        logger,
                        "twilio.release.carrier_failed",
                        level=logging.ERROR,
                        customer_id=str(params.customer_id),
                        phone_number=params.phone_number,
                        error=str(e),
                    )

            number.is_active = False
            number.released_at = utcnow()

        return ReleaseResult(success=True)

    def verify_webhook_signature(self, request: WebhookRequest) -> bool:
        if not self._config.auth_token:
            log_event(logger, "twilio.webhook.no_auth_token", level=logging.ERROR)
            return False
        if not request.signature:
            return False
        validator = RequestValidator(self._config.auth_token)
        return bool(validator.validate(request.url, request.body, request.signature))


def _default_client(config: TwilioConfig) -> Client:
    return Client(config.account_sid, config.auth_token)
