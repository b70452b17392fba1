"""Prometheus metrics: request count by route/status, latency, upload outcomes."""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total requests",
    ["method", "path", "status_class"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency",
    ["method", "path"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
UPLOAD_TOTAL = Counter(
    "uploads_total",
    "Upload pipeline outcomes",
    ["result", "reason"],  # result: stored | rejected | server_error
)
UPLOAD_BYTES = Histogram(
    "upload_bytes",
    "Size of stored uploads in bytes",
    buckets=(1024, 16 * 1024, 256 * 1024, 1024 ** 2, 4 * 1024 ** 2, 16 * 1024 ** 2, 64 * 1024 ** 2),
)

_KNOWN_PATHS = frozenset({"/", "/upload", "/status", "/metrics", "/health", "/healthz", "/readyz"})


def _status_class(status: int) -> str:
    if status < 200:
        return "1xx"
    if status < 300:
        return "2xx"
    if status < 400:
        return "3xx"
    if status < 500:
        return "4xx"
    return "5xx"


def record_request(method: str, path: str, status_code: int, latency_seconds: float) -> None:
    path = path or "/"
    # Unknown paths collapse into one label to avoid high cardinality from scanners
    if path not in _KNOWN_PATHS:
        path = "other"
    sc = _status_class(status_code)
    REQUEST_COUNT.labels(method=method, path=path, status_class=sc).inc()
    REQUEST_LATENCY.labels(method=method, path=path).observe(latency_seconds)


def record_upload_stored(byte_size: int) -> None:
    UPLOAD_TOTAL.labels(result="stored", reason="").inc()
    UPLOAD_BYTES.observe(byte_size)


def record_upload_rejected(reason: str) -> None:
    UPLOAD_TOTAL.labels(result="rejected", reason=reason).inc()


def record_upload_server_error(reason: str) -> None:
    UPLOAD_TOTAL.labels(result="server_error", reason=reason).inc()


def get_metrics() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
