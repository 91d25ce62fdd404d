from __future__ import annotations

from replypilot.models.base import Base as Base  # noqa: F401
from replypilot.models.conversations import Conversation, Lead, Message  # noqa: F401
from replypilot.models.customers import (  # noqa: F401
    AiSettings,
    Customer,
    FonecloudNumber,
    NotificationPreference,
    PhoneNumber,
)
from replypilot.models.enums import (  # noqa: F401
    ConversationStatus,
    DeliveryStatus,
    JobKind,
    LeadSource,
    MessageDirection,
    MessageSender,
    NotificationType,
    QueueName,
)
