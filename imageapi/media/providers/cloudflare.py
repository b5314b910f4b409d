"""Cloudflare Workers AI image generation provider."""

from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Optional

import httpx

from imageapi.core.errors import ImageAPIError, ProtocolError, UpstreamError
from imageapi.core.logger import get_logger
from imageapi.media.imaging import guess_image_format
from imageapi.media.providers.base import (
    PARAM_STEPS,
    GenerationRequest,
    GenerationResult,
    HttpImageProvider,
    ModelCapability,
)


logger = get_logger("imageapi.media.cloudflare")

CLOUDFLARE_API_BASE_URL = "https://api.cloudflare.com/client/v4"
CLOUDFLARE_FLUX_SCHNELL_MODEL = "@cf/black-forest-labs/flux-1-schnell"
CLOUDFLARE_DEFAULT_STEPS = 8


class CloudflareImageProvider(HttpImageProvider):
    provider_key = "cloudflare"
    display_name = "Cloudflare"
    models = (
        ModelCapability(
            name="flux-1-schnell",
            supported_params=frozenset({PARAM_STEPS}),
            max_width=1024,
            max_height=1024,
            min_steps=4,
            max_steps=8,
            default_steps=CLOUDFLARE_DEFAULT_STEPS,
        ),
    )

    def __init__(
        self,
        *,
        account_id: str,
        api_token: str,
        base_url: str = CLOUDFLARE_API_BASE_URL,
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._account_id = account_id.strip()
        self._api_token = api_token.strip()
        self._base_url = base_url.rstrip("/")

    def _endpoint(self) -> str:
        if not self._account_id:
            raise ImageAPIError("cloudflare_account_id_missing")
        if not self._api_token:
            raise ImageAPIError("cloudflare_api_token_missing")
        return f"{self._base_url}/accounts/{self._account_id}/ai/run/{CLOUDFLARE_FLUX_SCHNELL_MODEL}"

    def generate(self, request: GenerationRequest) -> GenerationResult:
        endpoint = self._endpoint()
        payload: Dict[str, Any] = {
            "prompt": request.prompt,
            "steps": request.steps or CLOUDFLARE_DEFAULT_STEPS,
        }
        logger.info(
            "provider_call_started",
            provider=self.provider_key,
            model=request.model_name,
            steps=payload["steps"],
        )

        response = self._send(
            "POST",
            endpoint,
            headers={
                "Authorization": f"Bearer {self._api_token}",
                "Content-Type": "application/json",
            },
            json=payload,
        )
        self._check_status(response, "request_failed")
        body = self._json_object(response, "response")

        errors = body.get("errors") or []
        if not body.get("success") or errors:
            message = "api reported failure without error details"
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                message = str(errors[0].get("message") or message)
            raise UpstreamError("cloudflare_api_error", http_status=response.status_code, body=message)

        result = body.get("result")
        encoded = result.get("image") if isinstance(result, dict) else None
        if not isinstance(encoded, str) or not encoded.strip():
            raise ProtocolError("cloudflare_missing_image")
        try:
            data = base64.b64decode(encoded)
        except (binascii.Error, ValueError) as exc:
            raise ProtocolError("cloudflare_invalid_base64_image") from exc

        return GenerationResult(image_bytes=data, format=guess_image_format(data))
