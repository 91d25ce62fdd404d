from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel


class InboundWebhookResponse(BaseModel):
    success: bool
    conversation_id: UUID | None = None
    message_id: UUID | None = None
    error: str | None = None
