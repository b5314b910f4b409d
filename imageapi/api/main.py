"""FastAPI application entrypoint for imageapi."""

from __future__ import annotations

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from imageapi.core.config import get_settings
from imageapi.core.errors import ImageAPIError, UpstreamError
from imageapi.core.logger import bind_request_context, clear_request_context, get_logger
from imageapi.core.metrics import record_http_request, render_prometheus_metrics
from imageapi.core.observability import init_sentry, sentry_scope
from imageapi.media.router import router as media_router
from imageapi.media.service import get_generation_service


settings = get_settings()
logger = get_logger("imageapi.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id", str(uuid4()))
    bind_request_context(request_id=request_id)

    response = None
    status_code = 500

    try:
        with sentry_scope(request_id=request_id):
            response = await call_next(request)
        status_code = int(response.status_code)
    finally:
        duration = perf_counter() - started_at
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=duration,
            )
        clear_request_context()

    response.headers["x-request-id"] = request_id
    return response


@app.exception_handler(ImageAPIError)
async def image_api_error_handler(request: Request, exc: ImageAPIError) -> JSONResponse:
    payload = {"error": exc.kind, "detail": str(exc)}
    if isinstance(exc, UpstreamError):
        payload["upstream_status"] = exc.http_status
    logger.info(
        "request_failed",
        path=request.url.path,
        error_kind=exc.kind,
        error_code=exc.code,
        status=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.on_event("startup")
def on_startup() -> None:
    sentry_enabled = init_sentry()
    service = get_generation_service()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=sentry_enabled,
        metrics_enabled=settings.metrics_enabled,
        providers=service.registry.provider_keys(),
        hosting_configured=service.hosting_configured,
        upload_to_image_host=settings.upload_to_image_host,
    )


@app.get("/health")
def health() -> JSONResponse:
    service = get_generation_service()
    providers = service.registry.provider_keys()
    healthy = bool(providers)

    payload = {
        "status": "ok" if healthy else "degraded",
        "env": settings.env,
        "providers": providers,
        "hosting": {
            "configured": service.hosting_configured,
            "deliver_via_host": settings.upload_to_image_host,
        },
    }
    return JSONResponse(content=payload, status_code=200 if healthy else 503)


@app.get("/version")
def version() -> dict[str, str]:
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "env": settings.env,
    }


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)

    payload = render_prometheus_metrics(
        app_name=settings.app_name,
        app_version=settings.app_version,
        env=settings.env,
    )
    return PlainTextResponse(
        payload,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(media_router)
