"""
Prometheus-style metrics endpoint.
"""
import time
from collections import defaultdict
from typing import Callable, Dict, Tuple

from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from chatrelay.core.config import get_settings

router = APIRouter(tags=["Metrics"])

UNMATCHED_ROUTE = "unmatched"

# (method, route, status) -> count
_http_requests: Dict[Tuple[str, str, int], int] = defaultdict(int)
# (method, route) -> [count, total seconds]
_http_durations: Dict[Tuple[str, str], list] = defaultdict(lambda: [0, 0.0])
# (frame type, outcome) -> count; outcome is delivered, dropped, ignored or failed
_realtime_frames: Dict[Tuple[str, str], int] = defaultdict(int)
_realtime_connections = {"opened": 0, "rejected": 0}
_startup_time = {"value": None}


def set_startup_time() -> None:
    _startup_time["value"] = time.time()


def record_request(method: str, route: str, status_code: int, duration: float) -> None:
    _http_requests[(method, route, status_code)] += 1
    summary = _http_durations[(method, route)]
    summary[0] += 1
    summary[1] += duration


def record_connection(outcome: str) -> None:
    """Count a realtime handshake: ``opened`` or ``rejected``."""
    _realtime_connections[outcome] = _realtime_connections.get(outcome, 0) + 1


def record_frame(frame_type: str, outcome: str) -> None:
    _realtime_frames[(frame_type, outcome)] += 1


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        # Label by route template; requests matching no route share one label
        route = request.scope.get("route")
        path = getattr(route, "path", None) or UNMATCHED_ROUTE

        record_request(request.method, path, response.status_code, duration)
        return response


def generate_prometheus_metrics(registry=None) -> str:
    """Render all counters in Prometheus text format."""
    settings = get_settings()
    lines = [
        "# HELP app_info Application information",
        "# TYPE app_info gauge",
        f'app_info{{version="{settings.app_version}"}} 1',
        "",
    ]

    if _startup_time["value"]:
        lines += [
            "# HELP app_start_time_seconds Unix timestamp when the app started",
            "# TYPE app_start_time_seconds gauge",
            f'app_start_time_seconds {_startup_time["value"]:.3f}',
            "",
        ]

    lines += ["# HELP http_requests_total Total number of HTTP requests", "# TYPE http_requests_total counter"]
    for (method, route, status), count in sorted(_http_requests.items()):
        lines.append(f'http_requests_total{{method="{method}",path="{route}",status="{status}"}} {count}')
    lines.append("")

    lines += ["# HELP http_request_duration_seconds HTTP request duration in seconds",
              "# TYPE http_request_duration_seconds summary"]
    for (method, route), (count, total) in sorted(_http_durations.items()):
        lines.append(f'http_request_duration_seconds_sum{{method="{method}",path="{route}"}} {total:.6f}')
        lines.append(f'http_request_duration_seconds_count{{method="{method}",path="{route}"}} {count}')
    lines.append("")

    lines += ["# HELP realtime_handshakes_total Realtime handshakes by outcome",
              "# TYPE realtime_handshakes_total counter"]
    for outcome, count in sorted(_realtime_connections.items()):
        lines.append(f'realtime_handshakes_total{{outcome="{outcome}"}} {count}')
    lines.append("")

    lines += ["# HELP realtime_frames_total Inbound realtime frames by type and outcome",
              "# TYPE realtime_frames_total counter"]
    for (frame_type, outcome), count in sorted(_realtime_frames.items()):
        lines.append(f'realtime_frames_total{{type="{frame_type}",outcome="{outcome}"}} {count}')

    if registry is not None:
        lines += [
            "",
            "# HELP realtime_connections Live realtime connections",
            "# TYPE realtime_connections gauge",
            f"realtime_connections {registry.connection_count()}",
            "# HELP realtime_online_users Users with at least one live connection",
            "# TYPE realtime_online_users gauge",
            f"realtime_online_users {registry.online_count()}",
        ]

    return "\n".join(lines) + "\n"


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Returns metrics in Prometheus exposition format.",
    response_class=Response,
)
async def metrics(request: Request) -> Response:
    content = generate_prometheus_metrics(getattr(request.app.state, "presence", None))
    return Response(
        content=content,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
