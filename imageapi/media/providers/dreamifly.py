"""Dreamifly image generation provider."""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, Optional

import httpx

from imageapi.core.errors import UpstreamError
from imageapi.core.logger import get_logger
from imageapi.media.imaging import detect_image_format
from imageapi.media.providers.base import (
    BROWSER_USER_AGENT,
    PARAM_IMAGE,
    PARAM_SEED,
    PARAM_STEPS,
    GenerationRequest,
    GenerationResult,
    HttpImageProvider,
    ModelCapability,
    decode_data_url,
)


logger = get_logger("imageapi.media.dreamifly")

DREAMIFLY_GENERATE_URL = "https://dreamifly.com/api/generate"
DREAMIFLY_OPTIMIZE_PROMPT_URL = "https://dreamifly.com/api/optimize-prompt"
DREAMIFLY_DEFAULT_STEPS = 25
DREAMIFLY_DENOISE = 0.7

_EDIT_PARAMS = frozenset({PARAM_STEPS, PARAM_SEED, PARAM_IMAGE})
_TEXT_PARAMS = frozenset({PARAM_STEPS, PARAM_SEED})


class DreamiflyImageProvider(HttpImageProvider):
    provider_key = "dreamifly"
    display_name = "Dreamifly"
    models = (
        ModelCapability(
            name="Flux-Kontext",
            supported_params=_EDIT_PARAMS,
            max_width=1920,
            max_height=1920,
            requires_image=True,
        ),
        ModelCapability(
            name="Qwen-Image-Edit",
            supported_params=_EDIT_PARAMS,
            max_width=1920,
            max_height=1920,
            requires_image=True,
        ),
        ModelCapability(name="Wai-SDXL-V150", supported_params=_TEXT_PARAMS, max_width=1920, max_height=1920),
        ModelCapability(name="Flux-Krea", supported_params=_TEXT_PARAMS, max_width=1920, max_height=1920),
        ModelCapability(name="HiDream-full-fp8", supported_params=_TEXT_PARAMS, max_width=1920, max_height=1920),
        ModelCapability(name="Qwen-Image", supported_params=_TEXT_PARAMS, max_width=1920, max_height=1920),
    )

    def __init__(
        self,
        *,
        generate_url: str = DREAMIFLY_GENERATE_URL,
        optimize_prompt_url: str = DREAMIFLY_OPTIMIZE_PROMPT_URL,
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._generate_url = generate_url
        self._optimize_prompt_url = optimize_prompt_url

    @staticmethod
    def _headers() -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": BROWSER_USER_AGENT,
            "Referer": "https://dreamifly.com/zh",
        }

    def _payload(self, request: GenerationRequest) -> Dict[str, Any]:
        images = None
        if request.image_bytes:
            images = [base64.b64encode(request.image_bytes).decode("ascii")]
        return {
            "prompt": request.prompt,
            "width": request.width,
            "height": request.height,
            "steps": request.steps or DREAMIFLY_DEFAULT_STEPS,
            "seed": request.seed or 0,
            "batch_size": 1,
            "model": request.model_name,
            "images": images,
            "denoise": DREAMIFLY_DENOISE,
        }

    def generate(self, request: GenerationRequest) -> GenerationResult:
        payload = self._payload(request)
        logger.info(
            "provider_call_started",
            provider=self.provider_key,
            model=request.model_name,
            width=payload["width"],
            height=payload["height"],
            steps=payload["steps"],
            seed=payload["seed"],
            image_bytes=len(request.image_bytes or b""),
        )

        response = self._send("POST", self._generate_url, headers=self._headers(), json=payload)
        self._check_status(response, "request_failed")

        body = response.content
        image_url = self._json_image_url(body)
        if image_url is not None:
            data, image_format = decode_data_url(image_url)
            return GenerationResult(image_bytes=data, format=image_format)

        return GenerationResult(image_bytes=body, format=detect_image_format(body) or "png")

    @staticmethod
    def _json_image_url(body: bytes) -> Optional[str]:
        # The endpoint answers with either JSON carrying a data URL or a raw image body.
        try:
            parsed = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(parsed, dict):
            return None
        image_url = str(parsed.get("imageUrl") or "").strip()
        return image_url or None

    def optimize_prompt(self, prompt: str) -> str:
        headers = self._headers()
        headers.update({"Accept": "*/*", "Origin": "https://dreamifly.com"})
        logger.info("prompt_optimization_started", provider=self.provider_key, prompt_chars=len(prompt))

        response = self._send("POST", self._optimize_prompt_url, headers=headers, json={"prompt": prompt})
        self._check_status(response, "optimize_prompt_failed")
        body = self._json_object(response, "optimize_prompt")

        if not body.get("success"):
            raise UpstreamError(
                f"{self.provider_key}_optimize_prompt_rejected",
                http_status=response.status_code,
                body=response.text,
            )
        return str(body.get("optimizedPrompt") or "")
