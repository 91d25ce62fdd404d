from __future__ import annotations

import enum


class ConversationStatus(enum.StrEnum):
    active = "active"
    closed = "closed"


class LeadSource(enum.StrEnum):
    sms = "sms"
    voice = "voice"
    web = "web"


class MessageDirection(enum.StrEnum):
    inbound = "inbound"
    outbound = "outbound"


class MessageSender(enum.StrEnum):
    lead = "lead"
    ai = "ai"
    staff = "staff"
    system = "system"


class DeliveryStatus(enum.StrEnum):
    queued = "queued"
    sent = "sent"
    failed = "failed"


class NotificationType(enum.StrEnum):
    new_lead = "new_lead"
    new_message = "new_message"


class JobKind(enum.StrEnum):
    sms_send = "sms_send"
    ai_generate = "ai_generate"
    notification_send = "notification_send"


class QueueName(enum.StrEnum):
    ai = "ai_queue"
    sms = "sms_queue"
    notifications = "notification_queue"
