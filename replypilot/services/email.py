from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from replypilot.core.logs import log_event

logger = logging.getLogger("replypilot.email")


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class EmailResult:
    success: bool
    error: str | None = None
    code: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.success, "error": self.error, "code": self.code}


EmailSender = Callable[[EmailMessage], EmailResult]


class HttpEmailSender:
    """Client for a SendGrid-compatible ``/v3/mail/send`` endpoint.

    Failures are reported in the result rather than raised; transport errors
    and 5xx responses are retried with exponential backoff.
    """

    def __init__(
        self,
        *,
        endpoint_url: str,
        api_key: str,
        from_address: str,
        from_name: str,
        http_client: httpx.Client,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._api_key = api_key
        self._from_address = from_address
        self._from_name = from_name
        self._http = http_client
        self._max_attempts = max(1, max_attempts)
        self._retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    def __call__(self, message: EmailMessage) -> EmailResult:
        body = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": self._from_address, "name": self._from_name},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        result = EmailResult(success=False, error="not attempted")
        for attempt in range(1, self._max_attempts + 1):
            result = self._attempt(body, headers)
            if result.success:
                log_event(logger, "email.sent", to=message.to, subject=message.subject)
                return result

            log_event(
                logger,
                "email.send.failed",
                level=logging.ERROR,
                to=message.to,
                attempt=attempt,
                error=result.error,
                code=result.code,
            )
            # 4xx means the request itself is wrong; repeating it cannot help.
            if result.code is not None and result.code < 500:
                break
            if attempt < self._max_attempts:
                self._sleep(self._retry_delay_seconds * 2 ** (attempt - 1))
        return result

    def _attempt(self, body: dict[str, Any], headers: dict[str, str]) -> EmailResult:
        try:
            res = self._http.post(self._endpoint_url, json=body, headers=headers)
        except httpx.HTTPError as e:
            return EmailResult(success=False, error=f"mail service unreachable: {e}")
        if res.status_code >= 400:
            return EmailResult(
                success=False,
                error=f"mail service returned {res.status_code}",
                code=res.status_code,
            )
        return EmailResult(success=True)
