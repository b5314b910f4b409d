import json

import httpx
import pytest

from imageapi.core.errors import GenerationTimeout, ImageAPIError, ProtocolError, UpstreamError
from imageapi.media.providers import GenerationRequest, ModelScopeImageProvider, ProviderTask, TaskStatus


OUTPUT_URL = "https://cdn.modelscope.example/out.png"


class _ScriptedBackend:
    """Answers submit, poll and download calls from a list of task statuses."""

    def __init__(self, statuses, *, output_image: bytes = b"") -> None:
        self.statuses = list(statuses)
        self.output_image = output_image
        self.submissions = []
        self.polls = 0
        self.downloads = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.headers["X-ModelScope-Async-Mode"] == "true"
            assert request.headers["Authorization"] == "Bearer ms-key"
            self.submissions.append(json.loads(request.content))
            return httpx.Response(200, json={"task_id": "task-1"})

        if request.url.path.endswith("/v1/tasks/task-1"):
            assert request.headers["X-ModelScope-Task-Type"] == "image_generation"
            self.polls += 1
            status = self.statuses[min(self.polls, len(self.statuses)) - 1]
            if isinstance(status, int):
                return httpx.Response(status, text="gateway hiccup")
            payload = {"task_status": status}
            if status == "SUCCEED":
                payload["output_images"] = [OUTPUT_URL]
            if status in {"FAILED", "CANCELED"}:
                payload["errors"] = {"code": 1003, "message": "content rejected"}
            return httpx.Response(200, json=payload)

        if str(request.url) == OUTPUT_URL:
            self.downloads += 1
            return httpx.Response(200, content=self.output_image, headers={"content-type": "image/png"})

        return httpx.Response(404)


def _provider(backend: _ScriptedBackend, sleeps: list, **kwargs) -> ModelScopeImageProvider:
    return ModelScopeImageProvider(
        api_key="ms-key",
        client=httpx.Client(transport=httpx.MockTransport(backend)),
        sleep=sleeps.append,
        **kwargs,
    )


def _request(**overrides) -> GenerationRequest:
    values = {
        "prompt": "a lighthouse at dusk",
        "model": "modelscope/Qwen/Qwen-Image",
        "width": 1024,
        "height": 768,
        "seed": 42,
    }
    values.update(overrides)
    return GenerationRequest(**values)


def test_returns_output_after_89_pending_polls(make_image) -> None:
    output = make_image("PNG")
    backend = _ScriptedBackend(["PENDING"] * 89 + ["SUCCEED"], output_image=output)
    sleeps = []

    result = _provider(backend, sleeps).generate(_request())

    assert result.image_bytes == output
    assert result.format == "png"
    assert result.source_url == OUTPUT_URL
    assert backend.polls == 90
    assert backend.downloads == 1
    assert sleeps == [5.0] * 90
    assert backend.submissions == [
        {"model": "Qwen/Qwen-Image", "prompt": "a lighthouse at dusk", "size": "1024x768", "seed": 42}
    ]


def test_always_pending_times_out_after_exact_budget() -> None:
    backend = _ScriptedBackend(["RUNNING"])
    sleeps = []

    with pytest.raises(GenerationTimeout, match="modelscope_polling_timed_out"):
        _provider(backend, sleeps).generate(_request())

    assert backend.polls == 90
    assert backend.downloads == 0


def test_polling_budget_is_configurable() -> None:
    backend = _ScriptedBackend(["PENDING"])
    sleeps = []

    with pytest.raises(GenerationTimeout):
        _provider(backend, sleeps, max_poll_attempts=3, poll_interval_seconds=0.5).generate(_request())

    assert backend.polls == 3
    assert sleeps == [0.5, 0.5, 0.5]


def test_non_success_poll_is_skipped_not_fatal(make_image) -> None:
    backend = _ScriptedBackend([503, 500, "PENDING", "SUCCEED"], output_image=make_image("PNG"))

    result = _provider(backend, []).generate(_request())

    assert backend.polls == 4
    assert result.image_bytes


@pytest.mark.parametrize("status", ["FAILED", "CANCELED"])
def test_backend_failure_is_distinct_from_timeout(status: str) -> None:
    backend = _ScriptedBackend(["PENDING", status])

    with pytest.raises(UpstreamError) as exc_info:
        _provider(backend, []).generate(_request())

    assert not isinstance(exc_info.value, GenerationTimeout)
    assert exc_info.value.code == f"modelscope_task_{status.lower()}"
    assert "content rejected" in exc_info.value.body
    assert backend.polls == 2


def test_submit_forwards_image_url_for_edit_model(make_image) -> None:
    backend = _ScriptedBackend(["SUCCEED"], output_image=make_image("PNG"))

    _provider(backend, []).generate(
        _request(model="modelscope/Qwen/Qwen-Image-Edit", image_url="https://host.example/in.jpg", seed=None)
    )

    assert backend.submissions[0]["image_url"] == "https://host.example/in.jpg"
    assert "seed" not in backend.submissions[0]


def test_submit_without_task_id_is_protocol_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"request_id": "abc"})

    provider = ModelScopeImageProvider(
        api_key="ms-key",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _: None,
    )

    with pytest.raises(ProtocolError, match="modelscope_missing_task_id"):
        provider.generate(_request())


def test_submit_http_error_surfaces_upstream_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, text="invalid token")

    provider = ModelScopeImageProvider(
        api_key="ms-key",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=lambda _: None,
    )

    with pytest.raises(UpstreamError) as exc_info:
        provider.generate(_request())
    assert exc_info.value.http_status == 401
    assert exc_info.value.body == "invalid token"


def test_missing_api_key_fails_before_any_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    provider = ModelScopeImageProvider(api_key="", client=httpx.Client(transport=httpx.MockTransport(handler)))

    with pytest.raises(ImageAPIError, match="modelscope_api_key_missing"):
        provider.generate(_request())


def test_provider_task_maps_backend_statuses() -> None:
    assert ProviderTask.from_payload("t", {"task_status": "SUCCEED"}).status is TaskStatus.SUCCEEDED
    assert ProviderTask.from_payload("t", {"task_status": "failed"}).status is TaskStatus.FAILED
    assert ProviderTask.from_payload("t", {"task_status": "CANCELED"}).status is TaskStatus.CANCELED
    pending = ProviderTask.from_payload("t", {"task_status": "PROCESSING"})
    assert pending.status is TaskStatus.PENDING
    assert not pending.status.terminal
