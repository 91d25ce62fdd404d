from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from typing import Any

request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"event": event, **fields}
    request_id = request_id_ctx.get()
    if request_id is not None:
        payload.setdefault("request_id", request_id)
    logger.log(level, json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))
