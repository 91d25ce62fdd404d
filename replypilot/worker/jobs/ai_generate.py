from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select

from replypilot.core.logs import log_event
from replypilot.db.session import session_scope
from replypilot.models.base import utcnow
from replypilot.models.conversations import Conversation, Message
from replypilot.models.enums import DeliveryStatus, MessageDirection, MessageSender
from replypilot.services.ai_replies import HistoryTurn, ReplyRequest
from replypilot.worker.context import WorkerContext
from replypilot.worker.errors import PermanentJobError

logger = logging.getLogger("replypilot.ai")

HISTORY_LIMIT = 20


def ai_generate(*, context: WorkerContext, job_id: str, payload: dict) -> dict:
    if context.reply_generator is None:
        raise PermanentJobError("AI reply generator is not configured")

    conversation_id = UUID(payload["conversation_id"])
    customer_id = UUID(payload["customer_id"])

    with session_scope(context.session_factory) as session:
        conversation = session.get(Conversation, conversation_id)
        if conversation is None:
            raise PermanentJobError("conversation is missing")
        if conversation.pending_ai_job_id != job_id:
            return _superseded(conversation_id=conversation_id, job_id=job_id)

        rows = (
            session.execute(
                select(Message.sender, Message.content)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc())
                .limit(HISTORY_LIMIT)
            )
            .all()
        )
        history = [HistoryTurn(role=str(sender), content=content) for sender, content in reversed(rows)]
        lead_message = payload.get("lead_message") or (history[-1].content if history else "")

    # The generator call can be slow; no transaction is held open across it.
    reply = context.reply_generator(
        ReplyRequest(
            customer_id=customer_id,
            conversation_id=conversation_id,
            lead_message=lead_message,
            history=history,
        )
    )
    if not reply:
        return {"success": False, "error": "empty reply"}

    with session_scope(context.session_factory) as session:
        conversation = session.get(Conversation, conversation_id)
        if conversation is None or conversation.pending_ai_job_id != job_id:
            # A newer inbound message arrived while we were generating.
            return _superseded(conversation_id=conversation_id, job_id=job_id)

        outbound = Message(
            conversation_id=conversation_id,
            direction=MessageDirection.outbound,
            sender=MessageSender.ai,
            content=reply,
            delivery_status=DeliveryStatus.queued,
        )
        session.add(outbound)
        conversation.ai_response_count = (conversation.ai_response_count or 0) + 1
        conversation.pending_ai_job_id = None
        conversation.ai_debounce_until = None
        conversation.updated_at = utcnow()
        session.flush()
        message_id = outbound.id
        lead_phone = conversation.lead_phone

    context.gateway.queue_sms(
        customer_id=customer_id,
        to=lead_phone,
        body=reply,
        options={"conversation_id": str(conversation_id), "message_id": str(message_id)},
    )
    return {"success": True, "message_id": str(message_id)}


def _superseded(*, conversation_id: UUID, job_id: str) -> dict:
    log_event(
        logger,
        "ai.job.superseded",
        level=logging.DEBUG,
        conversation_id=str(conversation_id),
        job_id=job_id,
    )
    return {"success": True, "skipped": "superseded"}
