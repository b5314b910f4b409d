"""Error taxonomy shared by providers, staging and orchestration."""

from __future__ import annotations

from typing import Optional


def truncate_detail(text: str, limit: int = 240) -> str:
    detail = (text or "").strip()
    if len(detail) > limit:
        detail = detail[:limit] + "..."
    return detail


class ImageAPIError(RuntimeError):
    """Base class for every failure surfaced to the caller of a generation."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, code: str, message: Optional[str] = None) -> None:
        self.code = code
        super().__init__(message or code)


class ValidationError(ImageAPIError):
    """Caller input is malformed or missing. Never retried."""

    kind = "validation_error"
    status_code = 400


class UpstreamError(ImageAPIError):
    """A third-party call answered with a non-success status."""

    kind = "upstream_error"
    status_code = 502

    def __init__(self, code: str, *, http_status: int, body: str = "") -> None:
        self.http_status = http_status
        self.body = body
        super().__init__(code, f"{code} status={http_status} detail={truncate_detail(body)}")


class ProtocolError(ImageAPIError):
    """A response body does not have the expected shape."""

    kind = "protocol_error"
    status_code = 502


class NetworkError(ImageAPIError):
    """Transport failure, or a download that did not succeed."""

    kind = "network_error"
    status_code = 502


class HostingUnavailable(ImageAPIError):
    """No hosting credentials are configured, so nothing can be staged."""

    kind = "hosting_unavailable"
    status_code = 503


class GenerationTimeout(ImageAPIError):
    """The asynchronous polling budget ran out before the task finished."""

    kind = "timeout"
    status_code = 504


class ProviderUnavailable(ImageAPIError):
    """The requested capability is not offered by any registered provider."""

    kind = "provider_unavailable"
    status_code = 503
