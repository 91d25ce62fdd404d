from __future__ import annotations

import logging
from typing import Any

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from twilio.twiml.messaging_response import MessagingResponse

from replypilot.core.config import get_settings
from replypilot.core.deps import get_sms_gateway
from replypilot.core.logs import log_event
from replypilot.core.security import build_public_url
from replypilot.schemas.webhooks import InboundWebhookResponse
from replypilot.sms.gateway import SmsGateway

logger = logging.getLogger("replypilot.api")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

TWILIO = "twilio"


async def _read_payload(request: Request) -> tuple[dict[str, Any], dict[str, Any] | str]:
    """Returns (payload for the adapter, body as signed by the carrier)."""
    content_type = (request.headers.get("content-type") or "").split(";")[0].strip().lower()
    if content_type in {"application/x-www-form-urlencoded", "multipart/form-data"}:
        form = await request.form()
        params = {k: str(v) for k, v in form.items()}
        return params, params

    raw = await request.body()
    if not raw:
        return {}, ""
    try:
        parsed = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body") from e
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="JSON body must be an object")
    return parsed, raw.decode("utf-8")


def _signature_header(request: Request, provider_id: str) -> str:
    if provider_id == TWILIO:
        return request.headers.get("x-twilio-signature") or ""
    return request.headers.get("x-signature") or ""


@router.post("/sms/{provider_id}")
async def inbound_sms(
    provider_id: str,
    request: Request,
    gateway: SmsGateway = Depends(get_sms_gateway),
) -> Response:
    if provider_id not in gateway.registry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown SMS provider")

    payload, signed_body = await _read_payload(request)
    url = build_public_url(get_settings().PUBLIC_BASE_URL, request.url.path, request.url.query)
    valid = gateway.verify_webhook_signature(
        provider_id,
        url=url,
        body=signed_body,
        signature=_signature_header(request, provider_id),
    )
    if not valid:
        log_event(logger, "webhook.signature.rejected", level=logging.WARNING, provider=provider_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook signature")

    result = await run_in_threadpool(gateway.handle_incoming_message, provider_id, payload)
    log_event(
        logger,
        "webhook.inbound.handled",
        level=logging.INFO if result.success else logging.WARNING,
        provider=provider_id,
        success=result.success,
        conversation_id=result.conversation_id,
        message_id=result.message_id,
        error=result.error,
    )

    if provider_id == TWILIO:
        return Response(content=str(MessagingResponse()), media_type="application/xml")

    body = InboundWebhookResponse(
        success=result.success,
        conversation_id=result.conversation_id,
        message_id=result.message_id,
        error=result.error,
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if result.success else status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body.model_dump(mode="json"),
    )
