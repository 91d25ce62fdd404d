from __future__ import annotations

import hmac

from fastapi import HTTPException, Request, status

from replypilot.core.config import get_settings
from replypilot.sms.gateway import SmsGateway
from replypilot.worker.queue import JobQueue


def get_job_queue(request: Request) -> JobQueue:
    return request.app.state.job_queue


def get_sms_gateway(request: Request) -> SmsGateway:
    return request.app.state.sms_gateway


def require_ops_token(request: Request) -> None:
    settings = get_settings()
    if not settings.OPS_API_TOKEN:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="OPS_API_TOKEN not configured",
        )
    supplied = request.headers.get("x-ops-token") or ""
    if not hmac.compare_digest(supplied.encode("utf-8"), settings.OPS_API_TOKEN.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid ops token")
