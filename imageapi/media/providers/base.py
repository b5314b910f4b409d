"""Provider contracts for image generation backends."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Optional, Protocol, Tuple, runtime_checkable

import httpx

from imageapi.core.errors import NetworkError, ProtocolError, UpstreamError


PARAM_SEED = "seed"
PARAM_STEPS = "steps"
PARAM_IMAGE = "image"

DEFAULT_DIMENSION = 1024
MIN_DIMENSION = 64

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
)

SleepFn = Callable[[float], None]


@dataclass(frozen=True)
class ModelCapability:
    """Declared optional parameters and bounds of one provider model."""

    name: str
    supported_params: FrozenSet[str] = frozenset()
    max_width: int = DEFAULT_DIMENSION
    max_height: int = DEFAULT_DIMENSION
    min_steps: Optional[int] = None
    max_steps: Optional[int] = None
    default_steps: Optional[int] = None
    requires_image: bool = False

    def supports(self, param: str) -> bool:
        return param in self.supported_params


@dataclass(frozen=True)
class GenerationRequest:
    """Normalized generation input.

    `model` is the compound `provider/model` identifier. After orchestration at most one
    of `image_bytes` and `image_url` is set.
    """

    prompt: str
    model: str
    width: int = 0
    height: int = 0
    seed: Optional[int] = None
    steps: Optional[int] = None
    image_bytes: Optional[bytes] = field(default=None, repr=False)
    image_url: Optional[str] = None
    image_filename: Optional[str] = None

    @property
    def model_name(self) -> str:
        _, _, name = self.model.partition("/")
        return name or self.model

    @property
    def has_image(self) -> bool:
        return bool(self.image_bytes) or bool((self.image_url or "").strip())


@dataclass(frozen=True)
class GenerationResult:
    image_bytes: bytes = field(repr=False)
    format: str = "png"
    source_url: Optional[str] = None

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"


class ImageProvider(Protocol):
    provider_key: str
    display_name: str

    def generate(self, request: GenerationRequest) -> GenerationResult:
        raise NotImplementedError

    def get_models(self) -> Tuple[ModelCapability, ...]:
        raise NotImplementedError

    def requires_image_url(self) -> bool:
        raise NotImplementedError


@runtime_checkable
class PromptOptimizer(Protocol):
    def optimize_prompt(self, prompt: str) -> str:
        raise NotImplementedError


class HttpImageProvider(ImageProvider):
    """Shared HTTP plumbing for adapters.

    Uses the injected `httpx.Client` pool when given, a short-lived client otherwise.
    """

    provider_key = "base"
    display_name = "base"
    models: Tuple[ModelCapability, ...] = ()

    def __init__(
        self,
        *,
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    def get_models(self) -> Tuple[ModelCapability, ...]:
        return self.models

    def requires_image_url(self) -> bool:
        return False

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            if self._client is not None:
                return self._client.request(method, url, **kwargs)
            with httpx.Client(timeout=self._timeout_seconds) as client:
                return client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            raise NetworkError(
                f"{self.provider_key}_transport_failed",
                f"{self.provider_key}_transport_failed detail={exc}",
            ) from exc

    def _download(self, url: str) -> Tuple[bytes, str]:
        return download_file(url, client=self._client, timeout_seconds=self._timeout_seconds)

    def _check_status(self, response: httpx.Response, code: str) -> None:
        if response.status_code < 200 or response.status_code >= 300:
            raise UpstreamError(
                f"{self.provider_key}_{code}",
                http_status=response.status_code,
                body=response.text,
            )

    def _json_object(self, response: httpx.Response, code: str) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError(f"{self.provider_key}_{code}_invalid_json") from exc
        if not isinstance(body, dict):
            raise ProtocolError(f"{self.provider_key}_{code}_invalid_payload")
        return body


def download_file(
    url: str,
    *,
    client: Optional[httpx.Client] = None,
    timeout_seconds: int = 60,
) -> Tuple[bytes, str]:
    """Fetch `url` and return its body and content type."""

    try:
        if client is not None:
            response = client.get(url, follow_redirects=True)
        else:
            with httpx.Client(timeout=max(1, timeout_seconds), follow_redirects=True) as own_client:
                response = own_client.get(url)
    except httpx.RequestError as exc:
        raise NetworkError("image_download_failed", f"image_download_failed url={url} detail={exc}") from exc

    if response.status_code != 200:
        raise NetworkError(
            "image_download_failed",
            f"image_download_failed url={url} status={response.status_code}",
        )
    return response.content, response.headers.get("content-type", "")


def decode_data_url(value: str) -> Tuple[bytes, str]:
    """Decode `data:image/<type>;base64,<payload>` into bytes and a format tag."""

    if not value.startswith("data:image/"):
        raise ProtocolError("data_url_unexpected_format")
    header, separator, payload = value.partition(",")
    if not separator:
        raise ProtocolError("data_url_missing_payload")
    mime_type = header[len("data:"):].split(";", 1)[0].strip().lower()
    image_format = mime_type.split("/", 1)[1] if "/" in mime_type else "png"
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProtocolError("data_url_invalid_base64") from exc
    if image_format == "jpg":
        image_format = "jpeg"
    return data, image_format or "png"
