from __future__ import annotations

from io import BytesIO
from typing import Callable, Tuple

from PIL import Image
import pytest

from imageapi.core.config import get_settings
from imageapi.core.metrics import reset_metrics_for_tests
from imageapi.media.service import reset_generation_service_cache


@pytest.fixture(autouse=True)
def _isolated_runtime(monkeypatch) -> None:
    for name in (
        "UPLOAD_TO_IMAGE_HOST",
        "SAVE_LOCAL_COPY",
        "NODEIMAGE_API_KEY",
        "MODELSCOPE_API_KEY",
        "FAL_API_KEY",
        "CLOUDFLARE_ACCOUNT_ID",
        "CLOUDFLARE_API_TOKEN",
        "SENTRY_DSN",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    reset_generation_service_cache()
    reset_metrics_for_tests()
    yield
    get_settings.cache_clear()
    reset_generation_service_cache()


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    def _make(
        image_format: str = "PNG",
        size: Tuple[int, int] = (32, 32),
        mode: str = "RGB",
        color=(200, 40, 40),
    ) -> bytes:
        if mode == "RGBA" and len(color) == 3:
            color = (*color, 128)
        buffer = BytesIO()
        Image.new(mode, size, color).save(buffer, format=image_format)
        return buffer.getvalue()

    return _make
