from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from replypilot.core.logs import log_event
from replypilot.db.session import call_after_commit
from replypilot.models.base import utcnow
from replypilot.models.conversations import Conversation, Lead, Message
from replypilot.models.customers import AiSettings
from replypilot.models.enums import (
    ConversationStatus,
    LeadSource,
    MessageDirection,
    MessageSender,
    NotificationType,
)
from replypilot.services.ai_scheduler import schedule_conversation_ai_response
from replypilot.services.notifications import queue_notification
from replypilot.sms.contract import InboundMessage, InboundResult
from replypilot.worker.queue import JobQueue

logger = logging.getLogger("replypilot.sms")

AiScheduleHook = Callable[..., Any]


def find_active_conversation(
    *, session: Session, customer_id: object, lead_phone: str
) -> Conversation | None:
    return (
        session.execute(
            select(Conversation)
            .where(
                Conversation.customer_id == customer_id,
                Conversation.lead_phone == lead_phone,
                Conversation.status == ConversationStatus.active,
            )
            .order_by(Conversation.last_message_at.desc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def find_first_lead(*, session: Session, conversation_id: object) -> Lead | None:
    return (
        session.execute(
            select(Lead)
            .where(Lead.conversation_id == conversation_id)
            .order_by(Lead.created_at.asc())
            .limit(1)
        )
        .scalars()
        .first()
    )


def apply_inbound_message(
    *,
    session: Session,
    job_queue: JobQueue,
    message: InboundMessage,
    auto_reply: bool = True,
    schedule_ai_response: AiScheduleHook = schedule_conversation_ai_response,
) -> InboundResult:
    """Apply a normalized inbound SMS to conversation/lead/message state.

    Runs inside the caller's transaction and only flushes; committing (or
    rolling back) is the caller's job. Follow-up work (AI reply scheduling and
    notifications) is best effort and never fails the call. Its jobs reach the
    broker only once the caller commits; a rollback discards them.
    """
    log_event(
        logger,
        "sms.inbound.applying",
        customer_id=str(message.customer_id),
        lead_phone=message.from_,
        to=message.to,
        provider_message_id=message.provider_message_id,
    )

    now = utcnow()
    conversation = find_active_conversation(
        session=session, customer_id=message.customer_id, lead_phone=message.from_
    )
    is_new_lead = conversation is None
    if conversation is None:
        conversation = Conversation(
            customer_id=message.customer_id,
            phone_number_id=message.phone_number_id,
            lead_phone=message.from_,
            lead_source=LeadSource.sms,
            status=ConversationStatus.active,
            message_count=0,
            last_message_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(conversation)
        session.flush()

        lead = Lead(
            customer_id=message.customer_id,
            conversation_id=conversation.id,
            phone=message.from_,
            source=LeadSource.sms,
            created_at=now,
        )
        session.add(lead)
        session.flush()
    else:
        lead = find_first_lead(session=session, conversation_id=conversation.id)

    inbound = Message(
        conversation_id=conversation.id,
        direction=MessageDirection.inbound,
        sender=MessageSender.lead,
        content=message.body,
        provider_message_id=message.provider_message_id,
        created_at=now,
    )
    session.add(inbound)

    conversation.message_count = (conversation.message_count or 0) + 1
    conversation.last_message_at = now
    conversation.updated_at = now
    session.flush()

    lead_id = str(lead.id) if lead is not None else None
    if is_new_lead:
        _notify_after_commit(
            session,
            job_queue,
            customer_id=message.customer_id,
            notification_type=NotificationType.new_lead,
            payload={
                "conversation_id": str(conversation.id),
                "lead_id": lead_id,
                "lead_phone": message.from_,
                "message": message.body,
            },
        )

    if auto_reply:
        ai_settings = session.get(AiSettings, message.customer_id)
        if ai_settings is not None:
            try:
                # A failed hand-off rolls back to the savepoint, keeping the message.
                with session.begin_nested():
                    schedule_ai_response(
                        session=session,
                        job_queue=job_queue,
                        conversation=conversation,
                        message=inbound,
                        ai_settings=ai_settings,
                    )
            except Exception as e:  # noqa: BLE001
                log_event(
                    logger,
                    "sms.inbound.ai_schedule_failed",
                    level=logging.ERROR,
                    customer_id=str(message.customer_id),
                    conversation_id=str(conversation.id),
                    error=str(e),
                )

    _notify_after_commit(
        session,
        job_queue,
        customer_id=message.customer_id,
        notification_type=NotificationType.new_message,
        payload={
            "conversation_id": str(conversation.id),
            "message_id": str(inbound.id),
            "lead_id": lead_id,
            "lead_phone": message.from_,
            "message": message.body,
        },
    )

    return InboundResult(success=True, conversation_id=conversation.id, message_id=inbound.id)


def _notify_after_commit(session: Session, job_queue: JobQueue, **kwargs: Any) -> None:
    call_after_commit(session, partial(queue_notification, job_queue, **kwargs))
