"""Image generation provider integrations."""

from imageapi.media.providers.base import (
    GenerationRequest,
    GenerationResult,
    ImageProvider,
    ModelCapability,
    PromptOptimizer,
)
from imageapi.media.providers.cloudflare import CloudflareImageProvider
from imageapi.media.providers.dreamifly import DreamiflyImageProvider
from imageapi.media.providers.factory import (
    build_provider_registry,
    get_http_client,
    get_provider_registry,
    reset_provider_registry_cache,
)
from imageapi.media.providers.fal_ai import FalImageProvider
from imageapi.media.providers.modelscope import ModelScopeImageProvider, ProviderTask, TaskStatus
from imageapi.media.providers.pollinations import PollinationsImageProvider
from imageapi.media.providers.registry import ProviderRegistry, parse_model_name

__all__ = [
    "CloudflareImageProvider",
    "DreamiflyImageProvider",
    "FalImageProvider",
    "GenerationRequest",
    "GenerationResult",
    "ImageProvider",
    "ModelCapability",
    "ModelScopeImageProvider",
    "PollinationsImageProvider",
    "PromptOptimizer",
    "ProviderRegistry",
    "ProviderTask",
    "TaskStatus",
    "build_provider_registry",
    "get_http_client",
    "get_provider_registry",
    "parse_model_name",
    "reset_provider_registry_cache",
]
