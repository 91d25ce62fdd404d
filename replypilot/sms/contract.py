from __future__ import annotations

import abc
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

CAPABILITIES: tuple[str, ...] = (
    "send",
    "handle_incoming",
    "provision_number",
    "release_number",
    "verify_webhook_signature",
)


@dataclass(frozen=True)
class SendParams:
    to: str
    body: str
    from_: str | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendResult:
    success: bool
    provider_message_id: str | None = None
    status: str | None = None
    error: str | None = None
    code: str | int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider_message_id": self.provider_message_id,
            "status": self.status,
            "error": self.error,
            "code": self.code,
        }


@dataclass(frozen=True)
class InboundMessage:
    """Carrier-neutral inbound SMS, as produced by an adapter's normalization."""

    customer_id: UUID
    from_: str
    to: str
    body: str
    provider_message_id: str | None = None
    phone_number_id: UUID | None = None


@dataclass(frozen=True)
class InboundResult:
    success: bool
    conversation_id: UUID | None = None
    message_id: UUID | None = None
    error: str | None = None


@dataclass(frozen=True)
class ProvisionParams:
    customer_id: UUID
    region_or_area_code: str | None = None


@dataclass(frozen=True)
class ProvisionResult:
    success: bool
    phone_number: str | None = None
    sid: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class ReleaseParams:
    customer_id: UUID
    phone_number: str


@dataclass(frozen=True)
class ReleaseResult:
    success: bool
    error: str | None = None


@dataclass(frozen=True)
class WebhookRequest:
    url: str
    body: dict[str, Any] | str
    signature: str


class SmsProvider(abc.ABC):
    """Capability set every SMS backend implements.

    Carrier failures are reported through the result objects; exceptions are
    reserved for configuration problems (missing credentials and the like).
    """

    @abc.abstractmethod
    def send(self, params: SendParams) -> SendResult: ...

    @abc.abstractmethod
    def handle_incoming(self, payload: dict[str, Any]) -> InboundResult: ...

    @abc.abstractmethod
    def provision_number(self, params: ProvisionParams) -> ProvisionResult: ...

    @abc.abstractmethod
    def release_number(self, params: ReleaseParams) -> ReleaseResult: ...

    @abc.abstractmethod
    def verify_webhook_signature(self, request: WebhookRequest) -> bool:
        """Return True when the request provably came from the carrier.

        Providers without a signature scheme return True unconditionally,
        which makes their webhooks unauthenticated.
        """
