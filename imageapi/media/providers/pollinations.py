"""Pollinations.ai image generation provider."""

from __future__ import annotations

import time
from typing import Dict, Optional
from urllib.parse import quote

import httpx

from imageapi.core.errors import ImageAPIError, NetworkError, UpstreamError, ValidationError
from imageapi.core.logger import get_logger
from imageapi.media.providers.base import (
    PARAM_IMAGE,
    PARAM_SEED,
    GenerationRequest,
    GenerationResult,
    HttpImageProvider,
    ModelCapability,
    SleepFn,
)


logger = get_logger("imageapi.media.pollinations")

POLLINATIONS_PROMPT_URL = "https://image.pollinations.ai/prompt/"


class PollinationsImageProvider(HttpImageProvider):
    """GET-based provider with a fixed-attempt retry policy.

    Works without authentication; a bearer key is sent only when configured.
    """

    provider_key = "pollinations_ai"
    display_name = "Pollinations_ai"
    models = (
        ModelCapability(
            name="flux",
            supported_params=frozenset({PARAM_SEED}),
            max_width=1024,
            max_height=1024,
        ),
        ModelCapability(
            name="kontext",
            supported_params=frozenset({PARAM_SEED, PARAM_IMAGE}),
            max_width=1024,
            max_height=1024,
            requires_image=True,
        ),
    )

    def __init__(
        self,
        *,
        api_key: str = "",
        base_url: str = POLLINATIONS_PROMPT_URL,
        max_attempts: int = 4,
        retry_interval_seconds: float = 3.0,
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
        sleep: SleepFn = time.sleep,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._api_key = api_key.strip()
        self._base_url = base_url
        self._max_attempts = max(1, max_attempts)
        self._retry_interval_seconds = max(0.0, retry_interval_seconds)
        self._sleep = sleep

    def requires_image_url(self) -> bool:
        return True

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            return {}
        return {"Authorization": f"Bearer {self._api_key}"}

    def _params(self, request: GenerationRequest) -> Dict[str, str]:
        params: Dict[str, str] = {}
        if request.image_url:
            params["image"] = request.image_url
        params["model"] = request.model_name
        params["width"] = str(request.width)
        params["height"] = str(request.height)
        if request.seed:
            params["seed"] = str(request.seed)
        params["nologo"] = "true"
        return params

    def generate(self, request: GenerationRequest) -> GenerationResult:
        capability = next((item for item in self.models if item.name == request.model_name), None)
        if capability is not None and capability.requires_image and not request.image_url:
            raise ValidationError(
                "pollinations_image_url_required",
                f"pollinations_image_url_required model={request.model_name}",
            )

        url = self._base_url + quote(request.prompt, safe="")
        params = self._params(request)
        logger.info(
            "provider_call_started",
            provider=self.provider_key,
            model=request.model_name,
            width=request.width,
            height=request.height,
            has_image_url=bool(request.image_url),
        )

        last_error: Optional[ImageAPIError] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = self._send("GET", url, params=params, headers=self._headers())
            except NetworkError as exc:
                last_error = exc
            else:
                if response.status_code == 200:
                    return GenerationResult(
                        image_bytes=response.content,
                        format=self._format_from_content_type(response.headers.get("content-type", "")),
                    )
                last_error = UpstreamError(
                    f"{self.provider_key}_request_failed",
                    http_status=response.status_code,
                    body=response.text,
                )

            logger.warning(
                "pollinations_attempt_failed",
                attempt=attempt,
                max_attempts=self._max_attempts,
                error=str(last_error),
            )
            if attempt < self._max_attempts:
                self._sleep(self._retry_interval_seconds)

        assert last_error is not None
        raise last_error

    @staticmethod
    def _format_from_content_type(content_type: str) -> str:
        if content_type.split(";", 1)[0].strip().lower() == "image/jpeg":
            return "jpeg"
        return "png"
