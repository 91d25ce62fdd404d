from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class QueueDepthItem(BaseModel):
    queue: str
    ready: int
    delayed: int
    dead: int


class QueueDepthsResponse(BaseModel):
    items: list[QueueDepthItem]


class DeadLetterItem(BaseModel):
    id: str
    kind: str
    attempts: int
    last_error: str | None
    created_at: float
    payload: dict[str, Any]


class DeadLettersResponse(BaseModel):
    items: list[DeadLetterItem]


class DeadLetterReplayResponse(BaseModel):
    status: str
    job_id: str
