"""Observability bootstrap helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any

try:  # pragma: no cover - availability depends on runtime image.
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
except Exception:  # pragma: no cover
    sentry_sdk = None
    FastApiIntegration = None

from imageapi.core.config import get_settings
from imageapi.core.logger import get_logger


_SENTRY_INITIALIZED = False
_SENTRY_AVAILABLE = sentry_sdk is not None and FastApiIntegration is not None


def _call_sentry_init(**kwargs: Any) -> None:
    if sentry_sdk is None:  # pragma: no cover
        raise RuntimeError("sentry_sdk is not available")
    sentry_sdk.init(**kwargs)


def init_sentry() -> bool:
    """Initialize Sentry once when DSN is configured."""

    global _SENTRY_INITIALIZED
    if _SENTRY_INITIALIZED:
        return True

    settings = get_settings()
    dsn = settings.sentry_dsn.strip()
    if not dsn:
        return False
    if not _SENTRY_AVAILABLE:
        get_logger("imageapi.observability").warning("sentry_sdk_not_installed")
        return False

    _call_sentry_init(
        dsn=dsn,
        environment=settings.env,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        integrations=[FastApiIntegration()],
    )
    _SENTRY_INITIALIZED = True
    get_logger("imageapi.observability").info(
        "sentry_initialized",
        env=settings.env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True


@contextmanager
def sentry_scope(*, request_id: str | None = None):
    """Create a temporary Sentry scope tagged with the request id."""

    if not _SENTRY_AVAILABLE:
        yield
        return

    assert sentry_sdk is not None  # for type-checkers only
    with sentry_sdk.push_scope() as scope:
        context_payload: dict[str, str] = {}
        if request_id:
            scope.set_tag("request_id", request_id)
            context_payload["request_id"] = request_id
        if context_payload:
            scope.set_context("imageapi", context_payload)
        yield


def reset_observability_for_tests() -> None:
    global _SENTRY_INITIALIZED
    _SENTRY_INITIALIZED = False


def capture_generation_failure(exc: BaseException, *, provider: str, stage: str) -> None:
    """Report server-side generation failures. Caller input errors are not reported."""

    if not _SENTRY_AVAILABLE:
        return
    if getattr(exc, "status_code", 500) < 500:
        return
    assert sentry_sdk is not None  # for type-checkers only
    with sentry_sdk.push_scope() as scope:
        scope.set_tag("provider", provider)
        scope.set_tag("generation_stage", stage)
        error_code = getattr(exc, "code", None)
        if error_code:
            scope.set_tag("error_code", error_code)
        sentry_sdk.capture_exception(exc)
