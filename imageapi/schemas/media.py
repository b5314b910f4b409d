"""Schemas for image generation endpoints."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ModelInfo(BaseModel):
    name: str
    supported_params: list[str]
    max_width: int
    max_height: int
    min_steps: Optional[int] = None
    max_steps: Optional[int] = None
    default_steps: Optional[int] = None
    requires_image: bool = False


class ProviderModels(BaseModel):
    provider: str
    display_name: str
    models: list[ModelInfo]


class OptimizePromptRequest(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)


class OptimizePromptResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    original_prompt: str = Field(alias="originalPrompt")
    optimized_prompt: str = Field(alias="optimizedPrompt")


class ImageUrlResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(alias="imageUrl")
