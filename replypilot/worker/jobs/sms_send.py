from __future__ import annotations

from uuid import UUID

from replypilot.db.session import session_scope
from replypilot.models.base import utcnow
from replypilot.models.conversations import Message
from replypilot.models.enums import DeliveryStatus
from replypilot.sms.contract import SendResult
from replypilot.worker.context import WorkerContext
from replypilot.worker.errors import PermanentJobError


def sms_send(*, context: WorkerContext, payload: dict) -> SendResult:
    to = payload.get("to")
    body = payload.get("body")
    if not to or body is None:
        raise PermanentJobError("sms_send job requires 'to' and 'body'")

    raw_customer_id = payload.get("customer_id")
    customer_id = UUID(str(raw_customer_id)) if raw_customer_id else None
    options = dict(payload.get("options") or {})

    result = context.gateway.send(
        customer_id=customer_id,
        to=to,
        body=body,
        from_=options.get("from"),
        options=options,
    )

    message_id = options.get("message_id")
    if message_id:
        _record_delivery(context=context, message_id=UUID(str(message_id)), result=result)
    return result


def _record_delivery(*, context: WorkerContext, message_id: UUID, result: SendResult) -> None:
    with session_scope(context.session_factory) as session:
        msg = session.get(Message, message_id)
        if msg is None:
            return
        if result.success:
            msg.provider_message_id = result.provider_message_id
            msg.delivery_status = DeliveryStatus.sent
            msg.delivery_error = None
            msg.sent_at = utcnow()
        else:
            msg.delivery_status = DeliveryStatus.failed
            msg.delivery_error = result.error
