"""ModelScope image generation provider (asynchronous submit + poll)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import time
from typing import Any, Dict, Optional

import httpx

from imageapi.core.errors import GenerationTimeout, ImageAPIError, ProtocolError, UpstreamError
from imageapi.core.logger import get_logger
from imageapi.media.imaging import guess_image_format
from imageapi.media.providers.base import (
    PARAM_IMAGE,
    PARAM_SEED,
    GenerationRequest,
    GenerationResult,
    HttpImageProvider,
    ModelCapability,
    SleepFn,
)


logger = get_logger("imageapi.media.modelscope")

MODELSCOPE_GENERATE_URL = "https://api-inference.modelscope.cn/v1/images/generations"
MODELSCOPE_TASK_URL = "https://api-inference.modelscope.cn/v1/tasks/"
ASYNC_MODE_HEADER = "X-ModelScope-Async-Mode"
TASK_TYPE_HEADER = "X-ModelScope-Task-Type"
TASK_TYPE_IMAGE_GENERATION = "image_generation"


class TaskStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def terminal(self) -> bool:
        return self is not TaskStatus.PENDING


_STATUS_MAP = {
    "SUCCEED": TaskStatus.SUCCEEDED,
    "FAILED": TaskStatus.FAILED,
    "CANCELED": TaskStatus.CANCELED,
}


@dataclass(frozen=True)
class ProviderTask:
    """Snapshot of a backend task as reported by one poll response."""

    task_id: str
    status: TaskStatus = TaskStatus.PENDING
    output_url: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None

    @classmethod
    def from_payload(cls, task_id: str, payload: Dict[str, Any]) -> "ProviderTask":
        raw_status = str(payload.get("task_status") or "").strip().upper()
        status = _STATUS_MAP.get(raw_status, TaskStatus.PENDING)

        output_images = payload.get("output_images")
        output_url = None
        if isinstance(output_images, list) and output_images:
            output_url = str(output_images[0] or "").strip() or None

        errors = payload.get("errors")
        error_code = None
        error_message = None
        if isinstance(errors, dict):
            code = errors.get("code")
            error_code = code if isinstance(code, int) else None
            error_message = str(errors.get("message") or "").strip() or None

        return cls(
            task_id=task_id,
            status=status,
            output_url=output_url,
            error_code=error_code,
            error_message=error_message,
        )


class ModelScopeImageProvider(HttpImageProvider):
    provider_key = "modelscope"
    display_name = "Modelscope"
    models = (
        ModelCapability(
            name="Qwen/Qwen-Image",
            supported_params=frozenset({PARAM_SEED}),
            max_width=2048,
            max_height=2048,
        ),
        ModelCapability(
            name="Qwen/Qwen-Image-Edit",
            supported_params=frozenset({PARAM_SEED, PARAM_IMAGE}),
            max_width=2048,
            max_height=2048,
            requires_image=True,
        ),
    )

    def __init__(
        self,
        *,
        api_key: str,
        generate_url: str = MODELSCOPE_GENERATE_URL,
        task_url: str = MODELSCOPE_TASK_URL,
        poll_interval_seconds: float = 5.0,
        max_poll_attempts: int = 90,
        timeout_seconds: int = 120,
        client: Optional[httpx.Client] = None,
        sleep: SleepFn = time.sleep,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self._api_key = api_key.strip()
        self._generate_url = generate_url
        self._task_url = task_url
        self._poll_interval_seconds = poll_interval_seconds
        self._max_poll_attempts = max(1, max_poll_attempts)
        self._sleep = sleep

    def requires_image_url(self) -> bool:
        return True

    def _auth_headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise ImageAPIError("modelscope_api_key_missing")
        return {"Authorization": f"Bearer {self._api_key}"}

    def submit(self, request: GenerationRequest) -> ProviderTask:
        payload: Dict[str, Any] = {
            "model": request.model_name,
            "prompt": request.prompt,
            "size": f"{request.width}x{request.height}",
        }
        if request.image_url:
            payload["image_url"] = request.image_url
        if request.seed is not None:
            payload["seed"] = request.seed

        headers = self._auth_headers()
        headers["Content-Type"] = "application/json"
        headers[ASYNC_MODE_HEADER] = "true"

        logger.info(
            "provider_call_started",
            provider=self.provider_key,
            model=request.model_name,
            size=payload["size"],
            has_image_url="image_url" in payload,
        )
        response = self._send("POST", self._generate_url, headers=headers, json=payload)
        self._check_status(response, "submit_failed")
        body = self._json_object(response, "submit")

        task_id = str(body.get("task_id") or "").strip()
        if not task_id:
            raise ProtocolError("modelscope_missing_task_id")
        logger.info("modelscope_task_submitted", task_id=task_id)
        return ProviderTask(task_id=task_id)

    def poll(self, task: ProviderTask) -> Optional[ProviderTask]:
        """Query the task once. Returns None when the poll itself was not successful."""

        headers = self._auth_headers()
        headers[TASK_TYPE_HEADER] = TASK_TYPE_IMAGE_GENERATION

        response = self._send("GET", f"{self._task_url}{task.task_id}", headers=headers)
        if response.status_code != 200:
            logger.warning(
                "modelscope_poll_non_success",
                task_id=task.task_id,
                status=response.status_code,
                detail=response.text[:240],
            )
            return None
        return ProviderTask.from_payload(task.task_id, self._json_object(response, "task"))

    def wait(self, task: ProviderTask) -> ProviderTask:
        """Poll until the task is terminal or the attempt budget is spent."""

        for attempt in range(1, self._max_poll_attempts + 1):
            self._sleep(self._poll_interval_seconds)
            polled = self.poll(task)
            if polled is None:
                continue
            task = polled
            if task.status.terminal:
                logger.info(
                    "modelscope_task_finished",
                    task_id=task.task_id,
                    status=task.status.value,
                    attempts=attempt,
                )
                return task

        raise GenerationTimeout(
            "modelscope_polling_timed_out",
            f"modelscope_polling_timed_out task_id={task.task_id} attempts={self._max_poll_attempts}",
        )

    def generate(self, request: GenerationRequest) -> GenerationResult:
        task = self.wait(self.submit(request))

        if task.status is TaskStatus.SUCCEEDED:
            if not task.output_url:
                raise ProtocolError("modelscope_task_succeeded_without_output")
            data, content_type = self._download(task.output_url)
            return GenerationResult(
                image_bytes=data,
                format=guess_image_format(data, content_type),
                source_url=task.output_url,
            )

        message = task.error_message or "task failed or was canceled"
        raise UpstreamError(
            f"modelscope_task_{task.status.value}",
            http_status=200,
            body=f"code={task.error_code} message={message}",
        )

