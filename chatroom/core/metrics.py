"""
In-memory metrics registry rendered in Prometheus exposition format.
"""
import threading
import time
from typing import Dict, List, Optional

_lock = threading.Lock()

# Simple in-memory metrics storage
_metrics = {
    "http_requests_total": {},  # {(method, path, status): count}
    "http_request_duration_seconds": {},  # {(method, path): [durations]}
    "chat_events_total": {},  # {event: count}
    "chat_connections": 0,
    "startup_time": None,
}

MAX_DURATION_SAMPLES = 1000


def record_request(method: str, path: str, status_code: int, duration: float) -> None:
    """Record an HTTP request metric."""
    with _lock:
        key = (method, path, str(status_code))
        totals = _metrics["http_requests_total"]
        totals[key] = totals.get(key, 0) + 1

        durations: List[float] = _metrics["http_request_duration_seconds"].setdefault((method, path), [])
        durations.append(duration)
        # Keep only the newest samples to bound memory
        if len(durations) > MAX_DURATION_SAMPLES:
            del durations[:-MAX_DURATION_SAMPLES]


def record_chat_event(event: str, amount: int = 1) -> None:
    """Count a chat level event (message accepted, rate limited, ...)."""
    with _lock:
        events = _metrics["chat_events_total"]
        events[event] = events.get(event, 0) + amount


def set_connections(count: int) -> None:
    _metrics["chat_connections"] = count


def set_startup_time(at: Optional[float] = None) -> None:
    """Record application startup time."""
    _metrics["startup_time"] = at if at is not None else time.time()


def get_chat_event_count(event: str) -> int:
    return _metrics["chat_events_total"].get(event, 0)


def reset_metrics() -> None:
    with _lock:
        _metrics["http_requests_total"].clear()
        _metrics["http_request_duration_seconds"].clear()
        _metrics["chat_events_total"].clear()
        _metrics["chat_connections"] = 0
        _metrics["startup_time"] = None


def generate_prometheus_metrics(version: str = "1.0.0") -> str:
    """Generate Prometheus-format metrics output."""
    lines = []

    lines.append("# HELP app_info Application information")
    lines.append("# TYPE app_info gauge")
    lines.append(f'app_info{{version="{version}"}} 1')
    lines.append("")

    if _metrics["startup_time"]:
        lines.append("# HELP app_start_time_seconds Unix timestamp when the app started")
        lines.append("# TYPE app_start_time_seconds gauge")
        lines.append(f'app_start_time_seconds {_metrics["startup_time"]:.3f}')
        lines.append("")

    with _lock:
        requests: Dict = dict(_metrics["http_requests_total"])
        durations: Dict = {key: list(values) for key, values in _metrics["http_request_duration_seconds"].items()}
        events: Dict = dict(_metrics["chat_events_total"])

    lines.append("# HELP http_requests_total Total number of HTTP requests")
    lines.append("# TYPE http_requests_total counter")
    for (method, path, status), count in sorted(requests.items()):
        lines.append(f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}')
    lines.append("")

    lines.append("# HELP http_request_duration_seconds HTTP request duration in seconds")
    lines.append("# TYPE http_request_duration_seconds summary")
    for (method, path), samples in sorted(durations.items()):
        if samples:
            lines.append(f'http_request_duration_seconds_sum{{method="{method}",path="{path}"}} {sum(samples):.6f}')
            lines.append(f'http_request_duration_seconds_count{{method="{method}",path="{path}"}} {len(samples)}')
    lines.append("")

    lines.append("# HELP chat_events_total Chat events by type")
    lines.append("# TYPE chat_events_total counter")
    for event, count in sorted(events.items()):
        lines.append(f'chat_events_total{{event="{event}"}} {count}')
    lines.append("")

    lines.append("# HELP chat_connections Live push connections")
    lines.append("# TYPE chat_connections gauge")
    lines.append(f'chat_connections {_metrics["chat_connections"]}')

    return "\n".join(lines) + "\n"
