import base64
import json

import httpx
import pytest

from imageapi.core.errors import ProtocolError, UpstreamError
from imageapi.media.providers import DreamiflyImageProvider, GenerationRequest, PromptOptimizer
from imageapi.media.providers.base import decode_data_url


def _provider(handler) -> DreamiflyImageProvider:
    return DreamiflyImageProvider(client=httpx.Client(transport=httpx.MockTransport(handler)))


def _request(**overrides) -> GenerationRequest:
    values = {"prompt": "a cat", "model": "dreamifly/Flux-Krea", "width": 1024, "height": 1024, "seed": 5}
    values.update(overrides)
    return GenerationRequest(**values)


def test_decodes_data_url_response(make_image) -> None:
    image = make_image("JPEG")
    payloads = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        assert request.headers["referer"] == "https://dreamifly.com/zh"
        assert "Mozilla/5.0" in request.headers["user-agent"]
        data_url = "data:image/jpg;base64," + base64.b64encode(image).decode("ascii")
        return httpx.Response(200, json={"imageUrl": data_url})

    result = _provider(handler).generate(_request())

    assert result.image_bytes == image
    assert result.format == "jpeg"
    assert payloads == [
        {
            "prompt": "a cat",
            "width": 1024,
            "height": 1024,
            "steps": 25,
            "seed": 5,
            "batch_size": 1,
            "model": "Flux-Krea",
            "images": None,
            "denoise": 0.7,
        }
    ]


def test_binary_body_is_returned_as_is(make_image) -> None:
    image = make_image("PNG")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=image, headers={"content-type": "image/png"})

    result = _provider(handler).generate(_request())

    assert result.image_bytes == image
    assert result.format == "png"


def test_edit_model_sends_base64_image_array(make_image) -> None:
    source = make_image("JPEG")
    payloads = []

    def handler(request: httpx.Request) -> httpx.Response:
        payloads.append(json.loads(request.content))
        return httpx.Response(200, content=make_image("PNG"))

    _provider(handler).generate(_request(model="dreamifly/Flux-Kontext", image_bytes=source, steps=30))

    assert payloads[0]["images"] == [base64.b64encode(source).decode("ascii")]
    assert payloads[0]["model"] == "Flux-Kontext"
    assert payloads[0]["steps"] == 30


def test_json_with_non_data_url_is_protocol_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"imageUrl": "https://dreamifly.com/out.png"})

    with pytest.raises(ProtocolError, match="data_url_unexpected_format"):
        _provider(handler).generate(_request())


def test_non_success_status_is_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    with pytest.raises(UpstreamError) as exc_info:
        _provider(handler).generate(_request())
    assert exc_info.value.code == "dreamifly_request_failed"
    assert exc_info.value.http_status == 429


def test_optimize_prompt_returns_optimized_text() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={"success": True, "originalPrompt": "cat", "optimizedPrompt": "a fluffy cat, soft light"},
        )

    provider = _provider(handler)

    assert isinstance(provider, PromptOptimizer)
    assert provider.optimize_prompt("cat") == "a fluffy cat, soft light"
    assert seen[0].url.path == "/api/optimize-prompt"
    assert seen[0].headers["origin"] == "https://dreamifly.com"
    assert json.loads(seen[0].content) == {"prompt": "cat"}


def test_optimize_prompt_rejection_is_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "quota"})

    with pytest.raises(UpstreamError, match="dreamifly_optimize_prompt_rejected"):
        _provider(handler).optimize_prompt("cat")


def test_decode_data_url_rejects_malformed_values() -> None:
    with pytest.raises(ProtocolError, match="data_url_missing_payload"):
        decode_data_url("data:image/png;base64")
    with pytest.raises(ProtocolError, match="data_url_invalid_base64"):
        decode_data_url("data:image/png;base64,@@not-base64@@")

    data, image_format = decode_data_url("data:image/webp;base64," + base64.b64encode(b"abc").decode("ascii"))
    assert (data, image_format) == (b"abc", "webp")
