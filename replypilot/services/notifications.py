from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any
from uuid import UUID

import bleach
from sqlalchemy import select
from sqlalchemy.orm import Session

from replypilot.broker.base import QueueError
from replypilot.core.logs import log_event
from replypilot.models.customers import NotificationPreference
from replypilot.models.enums import JobKind, NotificationType, QueueName
from replypilot.services.email import EmailMessage, EmailSender
from replypilot.worker.queue import Job, JobQueue

if TYPE_CHECKING:
    from replypilot.sms.gateway import SmsGateway

logger = logging.getLogger("replypilot.notifications")

_SMS_PREVIEW_CHARS = 100


def queue_notification(
    job_queue: JobQueue,
    *,
    customer_id: UUID,
    notification_type: NotificationType,
    payload: dict[str, Any],
) -> Job | None:
    """Best-effort enqueue; a queue outage must not undo the caller's work."""
    job = Job(
        kind=JobKind.notification_send.value,
        queue_name=QueueName.notifications.value,
        payload={
            "customer_id": str(customer_id),
            "notification_type": notification_type.value,
            "payload": payload,
        },
    )
    try:
        return job_queue.enqueue(QueueName.notifications.value, job)
    except QueueError as e:
        log_event(
            logger,
            "notification.enqueue.failed",
            level=logging.ERROR,
            customer_id=str(customer_id),
            notification_type=notification_type.value,
            error=str(e),
        )
        return None


def render_sms_notification(notification_type: str, data: dict[str, Any]) -> str | None:
    lead_phone = data.get("lead_phone") or "ukendt nummer"
    if notification_type == NotificationType.new_lead:
        return f"Ny kundeemne: {lead_phone}. Se Replypilot dashboard for besked."
    if notification_type == NotificationType.new_message:
        message = str(data.get("message") or "")
        preview = message[:_SMS_PREVIEW_CHARS]
        if len(message) > _SMS_PREVIEW_CHARS:
            preview += "..."
        return f"Ny besked fra {lead_phone}: {preview}"
    return None


def _escape(value: Any) -> str:
    # No tags allowed: lead-supplied text is escaped, never rendered as markup.
    return bleach.clean(str(value), tags=set(), strip=False)


def render_email_notification(
    notification_type: str, data: dict[str, Any], *, frontend_url: str = ""
) -> EmailMessage | None:
    """Build the owner e-mail for a notification; the recipient is left empty."""
    lead_phone = str(data.get("lead_phone") or "ukendt nummer")
    message = str(data.get("message") or "")
    if notification_type == NotificationType.new_lead:
        subject = "Ny kundeemne modtaget!"
        intro_html = f"<p>Du har modtaget en ny henvendelse fra <strong>{_escape(lead_phone)}</strong>.</p>"
        intro_text = f"Du har modtaget en ny henvendelse fra {lead_phone}."
    elif notification_type == NotificationType.new_message:
        subject = "Ny besked modtaget"
        intro_html = f"<p><strong>Fra:</strong> {_escape(lead_phone)}</p>"
        intro_text = f"Fra: {lead_phone}"
    else:
        return None

    html = [f"<h2>{subject}</h2>", intro_html, f"<p><strong>Besked:</strong> {_escape(message)}</p>"]
    text = [subject, intro_text, f"Besked: {message}"]
    conversation_id = data.get("conversation_id")
    if frontend_url and conversation_id:
        link = f"{frontend_url.rstrip('/')}/dashboard/conversations/{_escape(conversation_id)}"
        html.append(f'<p><a href="{link}">Se samtalen</a></p>')
        text.append(f"Se samtalen: {link}")
    return EmailMessage(to="", subject=subject, html="\n".join(html), text="\n".join(text))


def _email_wanted(prefs: NotificationPreference, notification_type: str) -> bool:
    if notification_type == NotificationType.new_lead:
        return prefs.email_new_lead
    if notification_type == NotificationType.new_message:
        return prefs.email_new_message
    return False


def _sms_wanted(prefs: NotificationPreference, notification_type: str) -> bool:
    if notification_type == NotificationType.new_lead:
        return prefs.sms_new_lead
    if notification_type == NotificationType.new_message:
        return prefs.sms_new_message
    return False


def send_notification(
    *,
    session: Session,
    gateway: SmsGateway,
    customer_id: UUID,
    notification_type: str,
    data: dict[str, Any],
    email_sender: EmailSender | None = None,
    frontend_url: str = "",
) -> dict[str, Any]:
    prefs = session.execute(
        select(NotificationPreference).where(NotificationPreference.customer_id == customer_id)
    ).scalar_one_or_none()
    if prefs is None:
        log_event(
            logger,
            "notification.skipped",
            level=logging.DEBUG,
            customer_id=str(customer_id),
            reason="no_preferences",
        )
        return {"sent": False, "reason": "no_preferences"}

    results: list[dict[str, Any]] = []
    if prefs.email_enabled and prefs.email and _email_wanted(prefs, notification_type):
        results.append(
            _send_email(
                email_sender,
                to=prefs.email,
                notification_type=notification_type,
                data=data,
                frontend_url=frontend_url,
            )
        )

    if prefs.sms_enabled and prefs.sms_phone and _sms_wanted(prefs, notification_type):
        text = render_sms_notification(notification_type, data)
        if text is None:
            results.append(
                {"channel": "sms", "success": False, "error": "Unknown notification type for SMS"}
            )
        else:
            result = gateway.send(customer_id=customer_id, to=prefs.sms_phone, body=text)
            results.append({"channel": "sms", **result.as_dict()})

    if not results:
        return {"sent": False, "reason": "no_enabled_channels"}

    log_event(
        logger,
        "notification.sent",
        customer_id=str(customer_id),
        notification_type=notification_type,
        channels=[r["channel"] for r in results],
    )
    return {"sent": True, "success": all(r["success"] for r in results), "results": results}


def _send_email(
    email_sender: EmailSender | None,
    *,
    to: str,
    notification_type: str,
    data: dict[str, Any],
    frontend_url: str,
) -> dict[str, Any]:
    if email_sender is None:
        return {"channel": "email", "success": False, "error": "E-mail delivery is not configured"}
    rendered = render_email_notification(notification_type, data, frontend_url=frontend_url)
    if rendered is None:
        return {"channel": "email", "success": False, "error": "Unknown notification type"}
    result = email_sender(replace(rendered, to=to))
    return {"channel": "email", **result.as_dict()}
