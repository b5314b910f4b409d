"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Tuple


_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_generation_total: Dict[Tuple[str, str], int] = defaultdict(int)
_generation_duration_sum: Dict[str, float] = defaultdict(float)
_staging_operations_total: Dict[Tuple[str, str], int] = defaultdict(int)
_output_normalization_fallback_total: int = 0


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_generation(*, provider: str, outcome: str, duration_seconds: float = 0.0) -> None:
    provider_label = _normalize_label(provider)
    with _lock:
        _generation_total[(provider_label, _normalize_label(outcome))] += 1
        _generation_duration_sum[provider_label] += max(duration_seconds, 0.0)


def record_staging_operation(*, operation: str, outcome: str) -> None:
    with _lock:
        _staging_operations_total[(_normalize_label(operation), _normalize_label(outcome))] += 1


def record_output_normalization_fallback() -> None:
    global _output_normalization_fallback_total
    with _lock:
        _output_normalization_fallback_total += 1


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        generation_total = dict(_generation_total)
        generation_duration = dict(_generation_duration_sum)
        staging_total = dict(_staging_operations_total)
        fallback_total = _output_normalization_fallback_total

    lines = [
        "# HELP imageapi_build_info Build metadata.",
        "# TYPE imageapi_build_info gauge",
        (
            f'imageapi_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        "# HELP imageapi_process_uptime_seconds Process uptime in seconds.",
        "# TYPE imageapi_process_uptime_seconds gauge",
        f"imageapi_process_uptime_seconds {uptime:.6f}",
        "# HELP imageapi_http_requests_total Total HTTP requests.",
        "# TYPE imageapi_http_requests_total counter",
    ]

    for (method, path, status), value in sorted(http_total.items()):
        lines.append(
            (
                f'imageapi_http_requests_total{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}",status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP imageapi_http_request_duration_seconds Request duration summary.",
            "# TYPE imageapi_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'imageapi_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'imageapi_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP imageapi_generation_total Generation requests by provider and outcome.",
            "# TYPE imageapi_generation_total counter",
        ]
    )
    for (provider, outcome), value in sorted(generation_total.items()):
        lines.append(
            (
                f'imageapi_generation_total{{provider="{_escape_label(provider)}",'
                f'outcome="{_escape_label(outcome)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP imageapi_generation_duration_seconds_sum Time spent in generation by provider.",
            "# TYPE imageapi_generation_duration_seconds_sum counter",
        ]
    )
    for provider, value in sorted(generation_duration.items()):
        lines.append(
            f'imageapi_generation_duration_seconds_sum{{provider="{_escape_label(provider)}"}} {value:.6f}'
        )

    lines.extend(
        [
            "# HELP imageapi_staging_operations_total Image host stage/unstage operations.",
            "# TYPE imageapi_staging_operations_total counter",
        ]
    )
    for (operation, outcome), value in sorted(staging_total.items()):
        lines.append(
            (
                f'imageapi_staging_operations_total{{operation="{_escape_label(operation)}",'
                f'outcome="{_escape_label(outcome)}"}} {value}'
            )
        )

    lines.extend(
        [
            "# HELP imageapi_output_normalization_fallback_total Outputs returned untouched after a re-encode failure.",
            "# TYPE imageapi_output_normalization_fallback_total counter",
            f"imageapi_output_normalization_fallback_total {fallback_total}",
        ]
    )

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at, _output_normalization_fallback_total
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _generation_total.clear()
        _generation_duration_sum.clear()
        _staging_operations_total.clear()
        _output_normalization_fallback_total = 0
    _started_at = time.time()
