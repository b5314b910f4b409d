"""Central runtime configuration for imageapi."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


OUTPUT_IMAGE_FORMATS = {"webp", "jpeg", "png"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    env: str = "development"
    log_level: str = "INFO"
    app_name: str = "imageapi"
    app_version: str = "0.1.0"
    dreamifly_enabled: bool = True
    pollinations_ai_api_key: str = ""
    modelscope_api_key: str = ""
    fal_api_key: str = ""
    cloudflare_account_id: str = ""
    cloudflare_api_token: str = ""
    nodeimage_api_key: str = ""
    nodeimage_upload_url: str = "https://api.nodeimage.com/api/upload"
    nodeimage_delete_url: str = "https://api.nodeimage.com/api/v1/delete/"
    provider_timeout_seconds: int = 120
    upload_to_image_host: bool = False
    save_local_copy: bool = False
    images_dir: str = "images"
    input_max_dimension: int = 1024
    input_jpeg_quality: int = 85
    output_image_format: str = "webp"
    output_image_quality: int = 80
    max_upload_bytes: int = 10 * 1024 * 1024
    modelscope_poll_interval_seconds: float = 5.0
    modelscope_max_poll_attempts: int = 90
    pollinations_max_attempts: int = 4
    pollinations_retry_interval_seconds: float = 3.0
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.0
    metrics_enabled: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def _validate(settings: Settings) -> Settings:
    if settings.sentry_traces_sample_rate < 0 or settings.sentry_traces_sample_rate > 1:
        raise ValueError("SENTRY_TRACES_SAMPLE_RATE must be between 0 and 1.")
    if settings.provider_timeout_seconds <= 0:
        raise ValueError("PROVIDER_TIMEOUT_SECONDS must be positive.")
    if settings.modelscope_poll_interval_seconds <= 0:
        raise ValueError("MODELSCOPE_POLL_INTERVAL_SECONDS must be positive.")
    if settings.modelscope_max_poll_attempts <= 0:
        raise ValueError("MODELSCOPE_MAX_POLL_ATTEMPTS must be positive.")
    if settings.pollinations_max_attempts <= 0:
        raise ValueError("POLLINATIONS_MAX_ATTEMPTS must be positive.")
    if settings.pollinations_retry_interval_seconds < 0:
        raise ValueError("POLLINATIONS_RETRY_INTERVAL_SECONDS must be zero or positive.")
    if settings.input_max_dimension < 64:
        raise ValueError("INPUT_MAX_DIMENSION must be at least 64.")
    for name, quality in (
        ("INPUT_JPEG_QUALITY", settings.input_jpeg_quality),
        ("OUTPUT_IMAGE_QUALITY", settings.output_image_quality),
    ):
        if quality < 1 or quality > 100:
            raise ValueError(f"{name} must be between 1 and 100.")
    if settings.output_image_format.strip().lower() not in OUTPUT_IMAGE_FORMATS:
        raise ValueError("OUTPUT_IMAGE_FORMAT must be one of: jpeg, png, webp.")
    if settings.max_upload_bytes <= 0:
        raise ValueError("MAX_UPLOAD_BYTES must be positive.")
    if settings.upload_to_image_host and not settings.nodeimage_api_key.strip():
        raise ValueError("NODEIMAGE_API_KEY is required when UPLOAD_TO_IMAGE_HOST=true.")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return validated settings as a cached singleton."""

    return _validate(Settings())
