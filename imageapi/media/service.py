"""Generation orchestration: validate, stage, call the provider, post-process, deliver."""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from pathlib import Path
import random
from time import perf_counter
from typing import Callable, List, Optional, Tuple

from imageapi.core.config import Settings, get_settings
from imageapi.core.errors import ProviderUnavailable, ValidationError
from imageapi.core.logger import get_logger
from imageapi.core.metrics import record_generation
from imageapi.core.observability import capture_generation_failure
from imageapi.media.imaging import NormalizedImage, normalize_input_image, normalize_output_image
from imageapi.media.providers import (
    GenerationRequest,
    ImageProvider,
    ModelCapability,
    PromptOptimizer,
    ProviderRegistry,
    get_provider_registry,
    reset_provider_registry_cache,
)
from imageapi.media.providers.base import DEFAULT_DIMENSION, MIN_DIMENSION, PARAM_IMAGE, PARAM_SEED, PARAM_STEPS
from imageapi.media.staging import ImageStager, get_image_stager


logger = get_logger("imageapi.media.service")

SEED_MIN = -(2**63)
SEED_MAX = 2**63 - 1


class GenerationStage(str, Enum):
    VALIDATING = "validating"
    STAGING = "staging"
    CALLING_PROVIDER = "calling_provider"
    POST_PROCESSING = "post_processing"
    DELIVERING = "delivering"
    DONE = "done"
    ABORTED = "aborted"


@dataclass(frozen=True)
class GenerationDelivery:
    """Final outcome of one generation: inline bytes or a hosted URL, never both."""

    content_type: str
    provider: str
    model: str
    width: int
    height: int
    seed: Optional[int] = None
    steps: Optional[int] = None
    image_bytes: Optional[bytes] = field(default=None, repr=False)
    image_url: Optional[str] = None
    normalized: bool = True
    stages: Tuple[GenerationStage, ...] = ()

    @property
    def inline(self) -> bool:
        return self.image_bytes is not None


def random_seed() -> int:
    return random.randint(SEED_MIN, SEED_MAX)


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(value, upper))


def _dimension(value: int, maximum: int) -> int:
    if not value:
        value = DEFAULT_DIMENSION
    return _clamp(value, MIN_DIMENSION, max(MIN_DIMENSION, maximum))


def _steps(value: Optional[int], capability: ModelCapability) -> Optional[int]:
    if not capability.supports(PARAM_STEPS):
        return None
    steps = value if value is not None else capability.default_steps
    if steps is None:
        return None
    if capability.min_steps is not None:
        steps = max(steps, capability.min_steps)
    if capability.max_steps is not None:
        steps = min(steps, capability.max_steps)
    return steps


def normalize_request(
    request: GenerationRequest,
    capability: ModelCapability,
    *,
    seed_factory: Callable[[], int] = random_seed,
) -> GenerationRequest:
    """Apply defaults, clamp into the model's bounds and drop unsupported fields.

    Out-of-range sizes and step counts are clamped, never rejected.
    """

    seed = None
    if capability.supports(PARAM_SEED):
        seed = request.seed if request.seed is not None else seed_factory()

    image_bytes = request.image_bytes
    image_url = (request.image_url or "").strip() or None
    if not capability.supports(PARAM_IMAGE):
        image_bytes = None
        image_url = None
    elif image_bytes:
        # Uploaded bytes win over a URL given alongside them.
        image_url = None

    return replace(
        request,
        prompt=request.prompt.strip(),
        width=_dimension(request.width, capability.max_width),
        height=_dimension(request.height, capability.max_height),
        seed=seed,
        steps=_steps(request.steps, capability),
        image_bytes=image_bytes or None,
        image_url=image_url,
    )


def _staged_filename(filename: Optional[str]) -> str:
    stem = Path(filename or "").stem or "input"
    return f"{stem}.jpg"


def _output_filename(image_format: str) -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    extension = "jpg" if image_format == "jpeg" else image_format
    return f"{timestamp}.{extension}"


class GenerationService:
    def __init__(
        self,
        *,
        registry: ProviderRegistry,
        stager: ImageStager,
        settings: Settings,
        seed_factory: Callable[[], int] = random_seed,
    ) -> None:
        self._registry = registry
        self._stager = stager
        self._settings = settings
        self._seed_factory = seed_factory

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def hosting_configured(self) -> bool:
        return self._stager.hosting_configured

    def list_models(self) -> List[Tuple[str, Tuple[ModelCapability, ...]]]:
        return self._registry.list_models()

    def _validate(self, request: GenerationRequest) -> Tuple[ImageProvider, ModelCapability]:
        if not request.prompt.strip():
            raise ValidationError("prompt_required")
        provider, capability = self._registry.resolve(request.model)
        if capability.requires_image and not request.has_image:
            raise ValidationError(
                "image_required",
                f"image_required model={request.model}",
            )
        return provider, capability

    def _prepare_image(
        self,
        provider: ImageProvider,
        request: GenerationRequest,
        cleanup: ExitStack,
    ) -> GenerationRequest:
        settings = self._settings
        if provider.requires_image_url():
            if not request.image_bytes:
                return request
            data = normalize_input_image(
                request.image_bytes,
                max_dimension=settings.input_max_dimension,
                quality=settings.input_jpeg_quality,
            )
            staged = cleanup.enter_context(self._stager.staged(data, _staged_filename(request.image_filename)))
            return replace(request, image_bytes=None, image_url=staged.public_url)

        data = request.image_bytes
        if not data:
            assert request.image_url is not None
            data, _ = self._stager.download(request.image_url)
        data = normalize_input_image(
            data,
            max_dimension=settings.input_max_dimension,
            quality=settings.input_jpeg_quality,
        )
        return replace(request, image_bytes=data, image_url=None)

    def _save_local_copy(self, image: NormalizedImage) -> None:
        target = Path(self._settings.images_dir) / _output_filename(image.format)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(image.data)
        except OSError as exc:
            logger.warning("local_copy_save_failed", path=str(target), error=str(exc))
            return
        logger.info("local_copy_saved", path=str(target), size_bytes=len(image.data))

    def _deliver(self, request: GenerationRequest, provider_key: str, image: NormalizedImage) -> GenerationDelivery:
        if self._settings.save_local_copy:
            self._save_local_copy(image)

        image_url = None
        image_bytes: Optional[bytes] = image.data
        if self._settings.upload_to_image_host:
            # The hosted output is the deliverable and stays on the host.
            staged = self._stager.stage(image.data, _output_filename(image.format))
            image_url = staged.public_url
            image_bytes = None

        return GenerationDelivery(
            content_type=image.content_type,
            provider=provider_key,
            model=request.model,
            width=request.width,
            height=request.height,
            seed=request.seed,
            steps=request.steps,
            image_bytes=image_bytes,
            image_url=image_url,
            normalized=image.normalized,
        )

    def generate(self, request: GenerationRequest) -> GenerationDelivery:
        started_at = perf_counter()
        provider_key = request.model.partition("/")[0].strip().lower() or "unknown"
        stages: List[GenerationStage] = []

        def enter(stage: GenerationStage) -> None:
            stages.append(stage)
            logger.info("generation_stage", stage=stage.value, provider=provider_key)

        enter(GenerationStage.VALIDATING)
        try:
            provider, capability = self._validate(request)
            normalized = normalize_request(request, capability, seed_factory=self._seed_factory)

            with ExitStack() as cleanup:
                if normalized.has_image:
                    enter(GenerationStage.STAGING)
                    normalized = self._prepare_image(provider, normalized, cleanup)

                enter(GenerationStage.CALLING_PROVIDER)
                result = provider.generate(normalized)

                enter(GenerationStage.POST_PROCESSING)
                output = normalize_output_image(
                    result.image_bytes,
                    image_format=self._settings.output_image_format,
                    quality=self._settings.output_image_quality,
                )

            enter(GenerationStage.DELIVERING)
            delivery = self._deliver(normalized, provider_key, output)
            enter(GenerationStage.DONE)
            delivery = replace(delivery, stages=tuple(stages))
        except Exception as exc:
            failed_stage = stages[-1]
            stages.append(GenerationStage.ABORTED)
            duration = perf_counter() - started_at
            outcome = getattr(exc, "kind", "internal_error")
            record_generation(provider=provider_key, outcome=outcome, duration_seconds=duration)
            logger.warning(
                "generation_aborted",
                provider=provider_key,
                stage=failed_stage.value,
                error_kind=outcome,
                error=str(exc),
                duration_seconds=round(duration, 3),
            )
            capture_generation_failure(exc, provider=provider_key, stage=failed_stage.value)
            raise

        duration = perf_counter() - started_at
        record_generation(provider=provider_key, outcome="succeeded", duration_seconds=duration)
        logger.info(
            "generation_completed",
            provider=provider_key,
            delivery="url" if delivery.image_url else "inline",
            content_type=delivery.content_type,
            size_bytes=len(output.data),
            duration_seconds=round(duration, 3),
        )
        return delivery

    def optimize_prompt(self, prompt: str) -> str:
        cleaned = (prompt or "").strip()
        if not cleaned:
            raise ValidationError("prompt_required")

        for provider_key in self._registry.provider_keys():
            provider = self._registry.get_provider(provider_key)
            if isinstance(provider, PromptOptimizer):
                return provider.optimize_prompt(cleaned)
        raise ProviderUnavailable("prompt_optimizer_unavailable")


@lru_cache(maxsize=1)
def get_generation_service() -> GenerationService:
    return GenerationService(
        registry=get_provider_registry(),
        stager=get_image_stager(),
        settings=get_settings(),
    )


def reset_generation_service_cache() -> None:
    get_generation_service.cache_clear()
    get_image_stager.cache_clear()
    reset_provider_registry_cache()
