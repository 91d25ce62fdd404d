from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from replypilot.core.http import build_http_client
from replypilot.core.logs import log_event
from replypilot.db.session import session_scope
from replypilot.models.base import utcnow
from replypilot.models.customers import Customer, FonecloudNumber
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
from replypilot.sms.errors import ProviderConfigurationError

logger = logging.getLogger("replypilot.sms.fonecloud")

# Optional carrier parameters passed through from SendParams.options.
_PASSTHROUGH_OPTIONS = ("type", "lifetime", "beginDate", "beginTime", "callback_url", "delivery")


@dataclass(frozen=True)
class FonecloudConfig:
    base_url: str
    token: str
    default_sender: str = "SMS"


def build_send_params(*, token: str, phone: str, sender_id: str, text: str, options: dict[str, Any]) -> dict[str, str]:
    params = {"token": token, "phone": phone, "senderID": sender_id, "text": text}
    for key in _PASSTHROUGH_OPTIONS:
        value = options.get(key)
        if value:
            params[key] = str(value)
    params.setdefault("type", "sms")
    return params


def extract_provider_message_id(payload: object, phone: str) -> str | None:
    """Fonecloud keys the response by recipient: a string id, an object or a list of objects."""
    if not isinstance(payload, dict) or not payload:
        return None

    value = payload.get(phone) if phone in payload else next(iter(payload.values()))
    if isinstance(value, list):
        value = value[0] if value else None
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and value.get("id_state") is not None:
        return str(value["id_state"])
    return None


class FonecloudProvider(SmsProvider):
    def __init__(
        self,
        config: FonecloudConfig,
        *,
        session_factory: sessionmaker,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config
        self._session_factory = session_factory
        self._http = http_client or build_http_client()

    def send(self, params: SendParams) -> SendResult:
        if not self._config.base_url or not self._config.token:
            raise ProviderConfigurationError(
                "Fonecloud SMS provider is not configured (FONECLOUD_API_BASE_URL / FONECLOUD_TOKEN)"
            )

        sender_id = params.from_ or self._config.default_sender
        query = build_send_params(
            token=self._config.token,
            phone=params.to,
            sender_id=sender_id,
            text=params.body,
            options=params.options,
        )
        url = f"{self._config.base_url.rstrip('/')}/send"
        log_event(logger, "fonecloud.send.request", level=logging.DEBUG, to=params.to, sender_id=sender_id)

        try:
            res = self._http.get(url, params=query)
        except httpx.HTTPError as e:
            log_event(logger, "fonecloud.send.network_error", level=logging.ERROR, to=params.to, error=str(e))
            return SendResult(success=False, error="Network error calling Fonecloud")

        try:
            data = res.json()
        except ValueError:
            data = None

        if res.status_code >= 400:
            message = None
            if isinstance(data, dict):
                message = data.get("error") or data.get("message")
            log_event(
                logger,
                "fonecloud.send.rejected",
                level=logging.ERROR,
                to=params.to,
                status_code=res.status_code,
                body=data,
            )
            return SendResult(
                success=False,
                error=str(message or f"Fonecloud error status {res.status_code}"),
                code=res.status_code,
            )

        provider_message_id = extract_provider_message_id(data, params.to)
        return SendResult(success=True, provider_message_id=provider_message_id, status="accepted")

    def handle_incoming(self, payload: dict[str, Any]) -> InboundResult:
        _ = payload
        return InboundResult(success=False, error="Fonecloud inbound webhooks are not supported")

    def provision_number(self, params: ProvisionParams) -> ProvisionResult:
        """Allocate a free number from the Fonecloud pool; the region hint is ignored."""
        with session_scope(self._session_factory) as session:
            number = (
                session.execute(
                    select(FonecloudNumber)
                    .where(FonecloudNumber.customer_id.is_(None), FonecloudNumber.is_active.is_(True))
                    .order_by(FonecloudNumber.created_at.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                .scalars()
                .first()
            )
            if number is None:
                return ProvisionResult(success=False, error="No Fonecloud numbers available in pool")

            customer = session.get(Customer, params.customer_id)
            if customer is None:
                return ProvisionResult(success=False, error="Customer not found")

            number.customer_id = params.customer_id
            number.allocated_at = utcnow()
            number.released_at = None
            customer.fonecloud_number_id = number.id
            phone_number, number_id = number.phone_number, number.id

        log_event(
            logger,
            "fonecloud.number.allocated",
            customer_id=str(params.customer_id),
            phone_number=phone_number,
        )
        return ProvisionResult(success=True, phone_number=phone_number, sid=str(number_id))

    def release_number(self, params: ReleaseParams) -> ReleaseResult:
        with session_scope(self._session_factory) as session:
            number = (
                session.execute(
                    select(FonecloudNumber).where(
                        FonecloudNumber.customer_id == params.customer_id,
                        FonecloudNumber.phone_number == params.phone_number,
                        FonecloudNumber.is_active.is_(True),
                    )
                )
                .scalars()
                .first()
            )
            if number is None:
                return ReleaseResult(success=False, error="Phone number not found or already released")

            number.customer_id = None
            number.released_at = utcnow()
            customer = session.get(Customer, params.customer_id)
            if customer is not None and customer.fonecloud_number_id == number.id:
                customer.fonecloud_number_id = None

        log_event(
            logger,
            "fonecloud.number.released",
            customer_id=str(params.customer_id),
            phone_number=params.phone_number,
        )
        return ReleaseResult(success=True)

    def verify_webhook_signature(self, request: WebhookRequest) -> bool:
        # Fonecloud does not sign webhooks, so anything claiming to be Fonecloud is accepted.
        _ = request
        log_event(logger, "fonecloud.webhook.unsigned", level=logging.WARNING)
        return True
