from __future__ import annotations

from uuid import UUID

from replypilot.db.session import session_scope
from replypilot.services.notifications import send_notification
from replypilot.worker.context import WorkerContext
from replypilot.worker.errors import PermanentJobError


def notification_send(*, context: WorkerContext, payload: dict) -> dict:
    notification_type = payload.get("notification_type")
    if not notification_type or not payload.get("customer_id"):
        raise PermanentJobError("notification_send job requires customer_id and notification_type")

    with session_scope(context.session_factory) as session:
        return send_notification(
            session=session,
            gateway=context.gateway,
            customer_id=UUID(str(payload["customer_id"])),
            notification_type=notification_type,
            data=payload.get("payload") or {},
            email_sender=context.email_sender,
            frontend_url=context.frontend_url,
        )
