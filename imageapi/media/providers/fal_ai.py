"""Fal.ai image generation provider."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from imageapi.core.errors import ImageAPIError, ProtocolError, ValidationError
from imageapi.core.logger import get_logger
from imageapi.media.imaging import guess_image_format
from imageapi.media.providers.base import (
    PARAM_IMAGE,
    PARAM_SEED,
    GenerationRequest,
    GenerationResult,
    HttpImageProvider,
    ModelCapability,
)


logger = get_logger("imageapi.media.fal_ai")

FAL_SEEDREAM_EDIT_URL = "https://fal.run/fal-ai/bytedance/seedream/v4/edit"


class FalImageProvider(HttpImageProvider):
    """Synchronous provider that takes image URLs and answers with an output URL."""

    provider_key = "fal_ai"
    display_name = "fal_ai"
    models = (
        ModelCapability(
            name="bytedance/seedream/v4/edit",
            supported_params=frozenset({PARAM_SEED, PARAM_IMAGE}),
            max_width=4096,
            max_height=4096,
            requires_image=True,
        ),
    )

    def __init__(
        self,
        *,
        api_key: str,
        endpoint_url: str = FAL_SEEDREAM_EDIT_URL,
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._api_key = api_key.strip()
        self._endpoint_url = endpoint_url

    def requires_image_url(self) -> bool:
        return True

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise ImageAPIError("fal_ai_api_key_missing")
        return {
            "Authorization": f"Key {self._api_key}",
            "Content-Type": "application/json",
        }

    def generate(self, request: GenerationRequest) -> GenerationResult:
        if not request.image_url:
            raise ValidationError("fal_ai_image_url_required")

        payload: Dict[str, Any] = {
            "prompt": request.prompt,
            "image_urls": [request.image_url],
            "image_size": {"width": request.width, "height": request.height},
            "enable_safety_checker": False,
        }
        if request.seed is not None:
            payload["seed"] = request.seed

        logger.info(
            "provider_call_started",
            provider=self.provider_key,
            model=request.model_name,
            width=request.width,
            height=request.height,
        )
        response = self._send("POST", self._endpoint_url, headers=self._headers(), json=payload)
        self._check_status(response, "request_failed")
        body = self._json_object(response, "response")

        images = body.get("images")
        if not isinstance(images, list) or not images or not isinstance(images[0], dict):
            raise ProtocolError("fal_ai_no_images_returned")
        image_url = str(images[0].get("url") or "").strip()
        if not image_url:
            raise ProtocolError("fal_ai_image_url_missing")

        data, content_type = self._download(image_url)
        return GenerationResult(
            image_bytes=data,
            format=guess_image_format(data, content_type),
            source_url=image_url,
        )
