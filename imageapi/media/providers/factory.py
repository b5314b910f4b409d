"""Factory to build the provider registry from settings."""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional

import httpx

from imageapi.core.config import Settings, get_settings
from imageapi.core.logger import get_logger
from imageapi.media.providers.base import ImageProvider
from imageapi.media.providers.cloudflare import CloudflareImageProvider
from imageapi.media.providers.dreamifly import DreamiflyImageProvider
from imageapi.media.providers.fal_ai import FalImageProvider
from imageapi.media.providers.modelscope import ModelScopeImageProvider
from imageapi.media.providers.pollinations import PollinationsImageProvider
from imageapi.media.providers.registry import ProviderRegistry


logger = get_logger("imageapi.media.providers")


@lru_cache(maxsize=1)
def get_http_client() -> httpx.Client:
    """Connection pool shared by every adapter and the image host client."""

    settings = get_settings()
    return httpx.Client(timeout=settings.provider_timeout_seconds, follow_redirects=True)


def build_provider_registry(settings: Settings, *, client: Optional[httpx.Client] = None) -> ProviderRegistry:
    timeout = settings.provider_timeout_seconds
    providers: List[ImageProvider] = []

    if settings.dreamifly_enabled:
        providers.append(DreamiflyImageProvider(timeout_seconds=timeout, client=client))
    providers.append(
        PollinationsImageProvider(
            api_key=settings.pollinations_ai_api_key,
            max_attempts=settings.pollinations_max_attempts,
            retry_interval_seconds=settings.pollinations_retry_interval_seconds,
            timeout_seconds=timeout,
            client=client,
        )
    )
    if settings.modelscope_api_key.strip():
        providers.append(
            ModelScopeImageProvider(
                api_key=settings.modelscope_api_key,
                poll_interval_seconds=settings.modelscope_poll_interval_seconds,
                max_poll_attempts=settings.modelscope_max_poll_attempts,
                timeout_seconds=timeout,
                client=client,
            )
        )
    if settings.fal_api_key.strip():
        providers.append(FalImageProvider(api_key=settings.fal_api_key, timeout_seconds=timeout, client=client))
    if settings.cloudflare_account_id.strip() and settings.cloudflare_api_token.strip():
        providers.append(
            CloudflareImageProvider(
                account_id=settings.cloudflare_account_id,
                api_token=settings.cloudflare_api_token,
                timeout_seconds=timeout,
                client=client,
            )
        )

    registry = ProviderRegistry(providers)
    logger.info("provider_registry_built", providers=registry.provider_keys())
    return registry


@lru_cache(maxsize=1)
def get_provider_registry() -> ProviderRegistry:
    return build_provider_registry(get_settings(), client=get_http_client())


def reset_provider_registry_cache() -> None:
    get_provider_registry.cache_clear()
    get_http_client.cache_clear()
