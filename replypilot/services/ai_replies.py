from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

import httpx


@dataclass(frozen=True)
class HistoryTurn:
    role: str  # "lead" | "ai" | "staff" | "system"
    content: str


@dataclass(frozen=True)
class ReplyRequest:
    customer_id: UUID
    conversation_id: UUID
    lead_message: str
    history: list[HistoryTurn] = field(default_factory=list)


class ReplyGenerationError(RuntimeError):
    pass


ReplyGenerator = Callable[[ReplyRequest], str]


class HttpReplyGenerator:
    """Client for the external reply-generation service.

    POSTs the conversation and expects ``{"reply": "..."}`` back.
    """

    def __init__(self, *, endpoint_url: str, http_client: httpx.Client) -> None:
        self._endpoint_url = endpoint_url
        self._http = http_client

    def __call__(self, request: ReplyRequest) -> str:
        body = {
            "customer_id": str(request.customer_id),
            "conversation_id": str(request.conversation_id),
            "lead_message": request.lead_message,
            "history": [{"role": t.role, "content": t.content} for t in request.history],
        }
        try:
            res = self._http.post(self._endpoint_url, json=body)
        except httpx.HTTPError as e:
            raise ReplyGenerationError(f"reply service unreachable: {e}") from e
        if res.status_code >= 400:
            raise ReplyGenerationError(f"reply service returned {res.status_code}")

        try:
            payload = res.json()
        except ValueError as e:
            raise ReplyGenerationError("reply service returned invalid JSON") from e
        reply = payload.get("reply") if isinstance(payload, dict) else None
        if not isinstance(reply, str):
            raise ReplyGenerationError("reply service response has no reply text")
        return reply.strip()
