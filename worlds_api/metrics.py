"""Prometheus-style metrics: in-memory counters updated by middleware and the attempt limiter."""
from collections import defaultdict
import time

# (method, path_template, status_class) -> count. path_template normalizes path (e.g. /worlds/x -> /worlds/{id}).
_request_counts: dict[tuple[str, str, str], int] = defaultdict(int)
# allowed | rate_limited | fail_open | cleared -> count
_attempt_outcomes: dict[str, int] = defaultdict(int)
_start_time = time.monotonic()


def record_request(method: str, path: str, status_code: int) -> None:
    """Call from middleware after each request."""
    parts = path.strip("/").split("/")
    normalized = [p if p and p.isalpha() else "{id}" for p in parts]
    path_template = "/" + "/".join(normalized) if normalized else "/"
    status_class = f"{status_code // 100}xx"
    _request_counts[(method, path_template, status_class)] += 1


def record_attempt_outcome(outcome: str) -> None:
    _attempt_outcomes[outcome] += 1


def get_request_counts() -> dict[tuple[str, str, str], int]:
    return dict(_request_counts)


def get_attempt_outcomes() -> dict[str, int]:
    return dict(_attempt_outcomes)


def get_uptime_seconds() -> float:
    return time.monotonic() - _start_time


def reset() -> None:
    _request_counts.clear()
    _attempt_outcomes.clear()


def format_prometheus() -> str:
    """Render metrics in Prometheus text exposition format."""
    lines = [
        "# HELP http_requests_total Total HTTP requests by method, path, status class.",
        "# TYPE http_requests_total counter",
    ]
    for (method, path, status_class), count in sorted(get_request_counts().items()):
        labels = f'method="{method}",path="{path}",status="{status_class}"'
        lines.append(f"http_requests_total{{{labels}}} {count}")
    lines.append("")
    lines.extend([
        "# HELP shared_secret_attempts_total Failed shared-secret attempt handling by outcome.",
        "# TYPE shared_secret_attempts_total counter",
    ])
    for outcome, count in sorted(get_attempt_outcomes().items()):
        lines.append(f'shared_secret_attempts_total{{outcome="{outcome}"}} {count}')
    lines.append("")
    lines.extend([
        "# HELP process_uptime_seconds Process uptime in seconds.",
        "# TYPE process_uptime_seconds gauge",
        f"process_uptime_seconds {get_uptime_seconds():.2f}",
    ])
    return "\n".join(lines) + "\n"
