"""Image post-processing pipeline.

Two independent transforms:

* input normalization bounds the size of caller-supplied images before they are
  handed to an adapter or staged on the image host;
* output normalization re-encodes whatever a provider returned into the single
  canonical output format, falling back to the untouched bytes on failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from imageapi.core.errors import ValidationError
from imageapi.core.logger import get_logger
from imageapi.core.metrics import record_output_normalization_fallback


logger = get_logger("imageapi.media.imaging")

DEFAULT_INPUT_MAX_DIMENSION = 1024
DEFAULT_INPUT_QUALITY = 85
DEFAULT_OUTPUT_FORMAT = "webp"
DEFAULT_OUTPUT_QUALITY = 80

_PIL_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
}


@dataclass(frozen=True)
class NormalizedImage:
    data: bytes = field(repr=False)
    format: str
    normalized: bool = True

    @property
    def content_type(self) -> str:
        return f"image/{self.format}"


def detect_image_format(data: bytes) -> Optional[str]:
    """Best-effort format tag from magic bytes."""

    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "png"
    if data.startswith(b"\xff\xd8\xff"):
        return "jpeg"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if data.startswith(b"BM"):
        return "bmp"
    return None


def _open(data: bytes) -> Image.Image:
    image = Image.open(BytesIO(data))
    image.load()
    return image


def _flatten_to_rgb(image: Image.Image) -> Image.Image:
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background
    if image.mode != "RGB":
        return image.convert("RGB")
    return image


def normalize_input_image(
    data: bytes,
    *,
    max_dimension: int = DEFAULT_INPUT_MAX_DIMENSION,
    quality: int = DEFAULT_INPUT_QUALITY,
) -> bytes:
    """Downscale so the longer edge is at most `max_dimension` and re-encode as JPEG.

    Always re-encodes, whatever the input format, so upload size stays bounded.
    """

    try:
        image = _open(data)
    except Image.DecompressionBombError as exc:
        raise ValidationError("input_image_too_large", f"input_image_too_large detail={exc}") from exc
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ValidationError("input_image_undecodable") from exc

    source_format = (image.format or "unknown").lower()
    original_size = image.size
    image = ImageOps.exif_transpose(image)

    if max(image.size) > max_dimension:
        image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

    buffer = BytesIO()
    _flatten_to_rgb(image).save(buffer, format="JPEG", quality=quality, optimize=True)
    encoded = buffer.getvalue()

    logger.info(
        "input_image_normalized",
        source_format=source_format,
        original_width=original_size[0],
        original_height=original_size[1],
        width=image.size[0],
        height=image.size[1],
        original_bytes=len(data),
        normalized_bytes=len(encoded),
    )
    return encoded


def normalize_output_image(
    data: bytes,
    *,
    image_format: str = DEFAULT_OUTPUT_FORMAT,
    quality: int = DEFAULT_OUTPUT_QUALITY,
) -> NormalizedImage:
    """Re-encode provider output into the canonical format.

    Output already in the canonical format passes through unchanged, which keeps the
    transform idempotent. Any decode/encode failure returns the original bytes.
    """

    target = image_format.strip().lower()
    if detect_image_format(data) == target:
        return NormalizedImage(data=data, format=target)

    try:
        image = _open(data)
        if target == "jpeg":
            image = _flatten_to_rgb(image)
        elif image.mode not in ("RGB", "RGBA"):
            image = image.convert("RGBA")

        buffer = BytesIO()
        options = {"quality": quality}
        if target == "png":
            options = {"optimize": True}
        image.save(buffer, format=_PIL_FORMATS[target], **options)
    except (Image.DecompressionBombError, UnidentifiedImageError, OSError, ValueError, KeyError) as exc:
        record_output_normalization_fallback()
        logger.warning(
            "output_normalization_fallback",
            target_format=target,
            size_bytes=len(data),
            error=str(exc),
        )
        return NormalizedImage(
            data=data,
            format=detect_image_format(data) or "png",
            normalized=False,
        )

    return NormalizedImage(data=buffer.getvalue(), format=target)


def guess_image_format(data: bytes, content_type: str = "") -> str:
    """Format tag from magic bytes, then the content type, then `png`."""

    detected = detect_image_format(data)
    if detected:
        return detected
    subtype = content_type.split(";", 1)[0].strip().lower().partition("/")[2]
    if subtype == "jpg":
        return "jpeg"
    return subtype or "png"
