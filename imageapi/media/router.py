"""Image generation API routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from fastapi.responses import JSONResponse

from imageapi.core.config import get_settings
from imageapi.core.errors import ValidationError
from imageapi.core.logger import bind_request_model
from imageapi.media.providers import GenerationRequest
from imageapi.media.service import SEED_MAX, SEED_MIN, GenerationService, get_generation_service
from imageapi.schemas.media import (
    ImageUrlResponse,
    ModelInfo,
    OptimizePromptRequest,
    OptimizePromptResponse,
    ProviderModels,
)


router = APIRouter(prefix="/api", tags=["images"])


def _read_upload(upload: Optional[UploadFile]) -> tuple[Optional[bytes], Optional[str]]:
    if upload is None or not upload.filename:
        return None, None

    limit = get_settings().max_upload_bytes
    data = upload.file.read(limit + 1)
    if len(data) > limit:
        raise ValidationError("image_too_large", f"image_too_large limit_bytes={limit}")
    return (data or None), upload.filename


@router.get("/models", response_model=list[ProviderModels])
def list_models(service: GenerationService = Depends(get_generation_service)) -> list[ProviderModels]:
    return [
        ProviderModels(
            provider=provider_key,
            display_name=service.registry.get_provider(provider_key).display_name,
            models=[
                ModelInfo(
                    name=f"{provider_key}/{capability.name}",
                    supported_params=sorted(capability.supported_params),
                    max_width=capability.max_width,
                    max_height=capability.max_height,
                    min_steps=capability.min_steps,
                    max_steps=capability.max_steps,
                    default_steps=capability.default_steps,
                    requires_image=capability.requires_image,
                )
                for capability in capabilities
            ],
        )
        for provider_key, capabilities in service.list_models()
    ]


@router.post("/generate")
def generate_image(
    prompt: str = Form(""),
    model: str = Form(""),
    width: int = Form(0),
    height: int = Form(0),
    seed: Optional[int] = Form(None, ge=SEED_MIN, le=SEED_MAX),
    steps: Optional[int] = Form(None),
    image: Optional[UploadFile] = File(None),
    image_url: str = Form(""),
    service: GenerationService = Depends(get_generation_service),
):
    bind_request_model(model)
    image_bytes, image_filename = _read_upload(image)

    delivery = service.generate(
        GenerationRequest(
            prompt=prompt,
            model=model,
            width=width,
            height=height,
            seed=seed,
            steps=steps,
            image_bytes=image_bytes,
            image_url=image_url.strip() or None,
            image_filename=image_filename,
        )
    )

    if delivery.image_url is not None:
        return JSONResponse(content=ImageUrlResponse(image_url=delivery.image_url).model_dump(by_alias=True))

    headers = {"x-provider": delivery.provider}
    if delivery.seed is not None:
        headers["x-seed"] = str(delivery.seed)
    return Response(content=delivery.image_bytes, media_type=delivery.content_type, headers=headers)


@router.post("/optimize-prompt", response_model=OptimizePromptResponse, response_model_by_alias=True)
def optimize_prompt(
    payload: OptimizePromptRequest,
    service: GenerationService = Depends(get_generation_service),
) -> OptimizePromptResponse:
    optimized = service.optimize_prompt(payload.prompt)
    return OptimizePromptResponse(
        success=True,
        original_prompt=payload.prompt,
        optimized_prompt=optimized,
    )
