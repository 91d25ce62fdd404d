from __future__ import annotations

import logging
import time

from fastapi import Request
from starlette.responses import Response

from replypilot.core.logs import log_event
from replypilot.core.security import new_random_token

logger = logging.getLogger("replypilot.api")


def build_request_id(request: Request, *, header_name: str) -> str:
    incoming = (request.headers.get(header_name) or "").strip()
    if incoming:
        return incoming[:128]
    return new_random_token(nbytes=18)


def apply_security_headers(response: Response) -> None:
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "same-origin")


def log_request_completion(
    *,
    method: str,
    path: str,
    status_code: int,
    duration_ms: int,
) -> None:
    log_event(
        logger,
        "http.request.completed",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )


def now_ts() -> float:
    return time.time()
