import httpx
import pytest

from imageapi.core.errors import NetworkError, UpstreamError, ValidationError
from imageapi.media.providers import GenerationRequest, PollinationsImageProvider


def _provider(handler, sleeps: list, **kwargs) -> PollinationsImageProvider:
    return PollinationsImageProvider(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        sleep=sleeps.append,
        **kwargs,
    )


def _request(**overrides) -> GenerationRequest:
    values = {"prompt": "a cat", "model": "pollinations_ai/flux", "width": 512, "height": 640, "seed": 99}
    values.update(overrides)
    return GenerationRequest(**values)


def test_get_request_shape_and_jpeg_format(make_image) -> None:
    seen = []
    image = make_image("JPEG")

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=image, headers={"content-type": "image/jpeg"})

    result = _provider(handler, []).generate(_request())

    assert result.image_bytes == image
    assert result.format == "jpeg"
    request = seen[0]
    assert request.method == "GET"
    assert request.url.raw_path.split(b"?")[0] == b"/prompt/a%20cat"
    assert dict(request.url.params) == {
        "model": "flux",
        "width": "512",
        "height": "640",
        "seed": "99",
        "nologo": "true",
    }
    assert "authorization" not in request.headers


def test_non_jpeg_content_type_is_tagged_png(make_image) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=make_image("PNG"), headers={"content-type": "image/png"})

    assert _provider(handler, []).generate(_request()).format == "png"


def test_seed_omitted_when_zero_and_bearer_sent_when_configured(make_image) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=make_image("PNG"))

    _provider(handler, [], api_key="poll-key").generate(_request(seed=0))

    assert "seed" not in seen[0].url.params
    assert seen[0].headers["authorization"] == "Bearer poll-key"


def test_retries_four_times_with_fixed_backoff_then_raises_last_error() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(503, text=f"busy {attempts['count']}")

    sleeps = []
    with pytest.raises(UpstreamError) as exc_info:
        _provider(handler, sleeps).generate(_request())

    assert attempts["count"] == 4
    assert sleeps == [3.0, 3.0, 3.0]
    assert exc_info.value.http_status == 503
    assert exc_info.value.body == "busy 4"


def test_transport_failure_is_retried(make_image) -> None:
    attempts = {"count": 0}
    image = make_image("PNG")

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, content=image)

    sleeps = []
    result = _provider(handler, sleeps).generate(_request())

    assert result.image_bytes == image
    assert attempts["count"] == 2
    assert sleeps == [3.0]


def test_exhausted_transport_failures_surface_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkError):
        _provider(handler, [], max_attempts=2).generate(_request())


def test_kontext_requires_image_url_before_any_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(ValidationError, match="pollinations_image_url_required"):
        _provider(handler, []).generate(_request(model="pollinations_ai/kontext"))


def test_kontext_forwards_image_url(make_image) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=make_image("PNG"))

    _provider(handler, []).generate(
        _request(model="pollinations_ai/kontext", image_url="https://host.example/in.jpg")
    )

    assert seen[0].url.params["image"] == "https://host.example/in.jpg"
    assert seen[0].url.params["model"] == "kontext"


def test_requires_image_url() -> None:
    assert PollinationsImageProvider().requires_image_url() is True


def test_undecodable_response_is_retried_as_network_failure(make_image) -> None:
    attempts = {"count": 0}
    image = make_image("PNG")

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            return httpx.Response(200, headers={"content-encoding": "gzip"}, content=b"not gzip at all")
        return httpx.Response(200, content=image)

    sleeps = []
    result = _provider(handler, sleeps).generate(_request())

    assert result.image_bytes == image
    assert attempts["count"] == 2
    assert sleeps == [3.0]
