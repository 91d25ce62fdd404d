from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import make_asgi_app

from replypilot.broker.factory import build_queue_backend
from replypilot.core.config import get_settings
from replypilot.core.logs import configure_logging, request_id_ctx
from replypilot.core.metrics import observe_http_request
from replypilot.core.middleware import (
    apply_security_headers,
    build_request_id,
    log_request_completion,
    now_ts,
)
from replypilot.db.session import get_sessionmaker
from replypilot.routers.health import router as health_router
from replypilot.routers.ops import router as ops_router
from replypilot.routers.webhooks import router as webhooks_router
from replypilot.sms.factory import build_sms_gateway
from replypilot.sms.gateway import SmsGateway
from replypilot.worker.queue import JobQueue


def create_app(
    *,
    job_queue: JobQueue | None = None,
    sms_gateway: SmsGateway | None = None,
) -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_queue = None
        if getattr(app.state, "job_queue", None) is None:
            owned_queue = JobQueue(build_queue_backend(settings))
            app.state.job_queue = owned_queue
        if getattr(app.state, "sms_gateway", None) is None:
            app.state.sms_gateway = build_sms_gateway(
                settings=settings,
                session_factory=get_sessionmaker(),
                job_queue=app.state.job_queue,
            )
        try:
            yield
        finally:
            if owned_queue is not None:
                owned_queue.backend.close()

    app = FastAPI(title="ReplyPilot API", version=settings.VERSION, lifespan=lifespan)
    app.state.job_queue = job_queue
    app.state.sms_gateway = sms_gateway

    @app.middleware("http")
    async def add_security_headers_and_request_context(request, call_next):  # type: ignore[no-untyped-def]
        request_id = build_request_id(request, header_name=settings.REQUEST_ID_HEADER)
        token = request_id_ctx.set(request_id)
        start_ts = now_ts()
        method = request.method
        path = request.url.path
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[settings.REQUEST_ID_HEADER] = request_id
            apply_security_headers(response)
            return response
        finally:
            duration_ms = int((now_ts() - start_ts) * 1000)
            log_request_completion(
                method=method,
                path=path,
                status_code=status_code,
                duration_ms=duration_ms,
            )
            if settings.ENABLE_PROMETHEUS_METRICS:
                observe_http_request(
                    method=method,
                    path=_metrics_path(request),
                    status_code=status_code,
                    duration_ms=duration_ms,
                )
            request_id_ctx.reset(token)

    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(ops_router)
    if settings.ENABLE_PROMETHEUS_METRICS:
        app.mount(settings.PROMETHEUS_METRICS_PATH, make_asgi_app())
    return app


def _metrics_path(request) -> str:  # type: ignore[no-untyped-def]
    # Route template, not the raw path, to keep label cardinality bounded.
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


configure_logging(get_settings().LOG_LEVEL)
app = create_app()
