"""Image staging: download remote images and temporarily host local bytes."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, Optional, Tuple

import httpx

from imageapi.core.config import get_settings
from imageapi.core.errors import HostingUnavailable, ImageAPIError
from imageapi.core.logger import get_logger
from imageapi.core.metrics import record_staging_operation
from imageapi.integrations.nodeimage.client import NodeImageClient
from imageapi.media.providers.base import download_file
from imageapi.media.providers.factory import get_http_client


logger = get_logger("imageapi.media.staging")


@dataclass(frozen=True)
class StagedImage:
    public_url: str
    host_image_id: str


class ImageStager:
    def __init__(
        self,
        *,
        host_client: Optional[NodeImageClient],
        http_client: Optional[httpx.Client] = None,
        timeout_seconds: int = 60,
    ) -> None:
        self._host_client = host_client
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds

    @property
    def hosting_configured(self) -> bool:
        return self._host_client is not None and self._host_client.configured

    def download(self, url: str) -> Tuple[bytes, str]:
        return download_file(url, client=self._http_client, timeout_seconds=self._timeout_seconds)

    def stage(self, image_bytes: bytes, filename: str) -> StagedImage:
        if not self.hosting_configured:
            record_staging_operation(operation="stage", outcome="unavailable")
            raise HostingUnavailable("image_host_not_configured")

        assert self._host_client is not None
        try:
            uploaded = self._host_client.upload_image(image_bytes, filename)
        except ImageAPIError:
            record_staging_operation(operation="stage", outcome="failed")
            raise

        record_staging_operation(operation="stage", outcome="succeeded")
        logger.info(
            "image_staged",
            host_image_id=uploaded.image_id,
            size_bytes=len(image_bytes),
        )
        return StagedImage(public_url=uploaded.public_url, host_image_id=uploaded.image_id)

    def unstage(self, host_image_id: str) -> None:
        """Best-effort delete. Failures are logged and never raised."""

        if self._host_client is None:
            return
        try:
            self._host_client.delete_image(host_image_id)
        except Exception as exc:
            record_staging_operation(operation="unstage", outcome="failed")
            logger.warning(
                "image_unstage_failed",
                host_image_id=host_image_id,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return

        record_staging_operation(operation="unstage", outcome="succeeded")
        logger.info("image_unstaged", host_image_id=host_image_id)

    @contextmanager
    def staged(self, image_bytes: bytes, filename: str) -> Iterator[StagedImage]:
        """Stage for the duration of the block; unstage runs on every exit path."""

        staged_image = self.stage(image_bytes, filename)
        try:
            yield staged_image
        finally:
            self.unstage(staged_image.host_image_id)


@lru_cache(maxsize=1)
def get_image_stager() -> ImageStager:
    settings = get_settings()
    http_client = get_http_client()
    host_client = NodeImageClient(
        api_key=settings.nodeimage_api_key,
        upload_url=settings.nodeimage_upload_url,
        delete_url=settings.nodeimage_delete_url,
        timeout_seconds=settings.provider_timeout_seconds,
        client=http_client,
    )
    return ImageStager(
        host_client=host_client,
        http_client=http_client,
        timeout_seconds=settings.provider_timeout_seconds,
    )
