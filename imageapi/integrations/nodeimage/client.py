"""NodeImage API client used as the public image host."""

from __future__ import annotations

from dataclasses import dataclass
import mimetypes
from typing import Any, Dict, Optional

import httpx

from imageapi.core.errors import HostingUnavailable, NetworkError, ProtocolError, UpstreamError


@dataclass(frozen=True)
class UploadedImage:
    image_id: str
    public_url: str


class NodeImageClient:
    def __init__(
        self,
        *,
        api_key: str,
        upload_url: str = "https://api.nodeimage.com/api/upload",
        delete_url: str = "https://api.nodeimage.com/api/v1/delete/",
        timeout_seconds: int = 60,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._upload_url = upload_url
        self._delete_url = delete_url
        self._timeout_seconds = max(1, timeout_seconds)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise HostingUnavailable("nodeimage_api_key_missing")
        return {"X-API-Key": self._api_key}

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            if self._client is not None:
                response = self._client.request(method, url, **kwargs)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            raise NetworkError("nodeimage_transport_failed", f"nodeimage_transport_failed detail={exc}") from exc

        if response.status_code != 200:
            raise UpstreamError(
                f"nodeimage_{method.lower()}_failed",
                http_status=response.status_code,
                body=response.text,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProtocolError("nodeimage_invalid_json_response") from exc
        if not isinstance(body, dict):
            raise ProtocolError("nodeimage_invalid_payload")
        if not body.get("success"):
            raise UpstreamError(
                f"nodeimage_{method.lower()}_rejected",
                http_status=response.status_code,
                body=str(body.get("message") or ""),
            )
        return body

    def upload_image(self, image_bytes: bytes, filename: str) -> UploadedImage:
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        body = self._request(
            "POST",
            self._upload_url,
            headers=self._headers(),
            files={"image": (filename, image_bytes, content_type)},
        )

        image_id = str(body.get("image_id") or "").strip()
        links = body.get("links")
        public_url = str(links.get("direct") or "").strip() if isinstance(links, dict) else ""
        if not image_id or not public_url:
            raise ProtocolError("nodeimage_upload_missing_fields")
        return UploadedImage(image_id=image_id, public_url=public_url)

    def delete_image(self, image_id: str) -> None:
        if not image_id.strip():
            raise ProtocolError("nodeimage_image_id_missing")
        self._request("DELETE", f"{self._delete_url}{image_id.strip()}", headers=self._headers())

