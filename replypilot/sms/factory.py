from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from replypilot.core.config import Settings
from replypilot.core.security import build_public_url
from replypilot.sms.gateway import SmsGateway
from replypilot.sms.providers.fonecloud import FonecloudConfig, FonecloudProvider
from replypilot.sms.providers.twilio import TwilioConfig, TwilioProvider
from replypilot.sms.registry import ProviderRegistry, parse_extra_providers
from replypilot.worker.queue import JobQueue


def build_provider_registry(
    *,
    settings: Settings,
    session_factory: sessionmaker,
    job_queue: JobQueue,
) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(
        "twilio",
        TwilioProvider(
            TwilioConfig(
                account_sid=settings.TWILIO_ACCOUNT_SID,
                auth_token=settings.TWILIO_AUTH_TOKEN,
                messaging_service_sid=settings.TWILIO_MESSAGING_SERVICE_SID,
                number_country=settings.TWILIO_NUMBER_COUNTRY,
                sms_webhook_url=build_public_url(settings.PUBLIC_BASE_URL, "/webhooks/sms/twilio"),
            ),
            session_factory=session_factory,
            job_queue=job_queue,
        ),
    )
    registry.register(
        "fonecloud",
        FonecloudProvider(
            FonecloudConfig(
                base_url=settings.FONECLOUD_API_BASE_URL,
                token=settings.FONECLOUD_TOKEN,
                default_sender=settings.FONECLOUD_DEFAULT_SENDER_ID,
            ),
            session_factory=session_factory,
        ),
    )
    for provider_id, target in parse_extra_providers(settings.SMS_EXTRA_PROVIDERS):
        registry.register_from_path(provider_id, target)
    return registry


def build_sms_gateway(
    *,
    settings: Settings,
    session_factory: sessionmaker,
    job_queue: JobQueue,
    registry: ProviderRegistry | None = None,
) -> SmsGateway:
    registry = registry or build_provider_registry(
        settings=settings, session_factory=session_factory, job_queue=job_queue
    )
    # Fail at startup rather than on the first send if the default is misspelled.
    registry.require(settings.DEFAULT_SMS_PROVIDER)
    return SmsGateway(
        registry=registry,
        job_queue=job_queue,
        session_factory=session_factory,
        default_provider=settings.DEFAULT_SMS_PROVIDER,
    )
