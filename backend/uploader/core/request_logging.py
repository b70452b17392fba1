"""One structured log line per request, tagged with the upload outcome when there is one."""
import json
import logging
import re
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from uploader.core.config import get_settings
from uploader.core.logging_redaction import redact_for_log
from uploader.core.metrics import record_request

logger = logging.getLogger("uploader.request")

REQUEST_ID_HEADER = "X-Request-ID"
UNMETERED_PATHS = frozenset({"/metrics", "/health", "/healthz", "/readyz"})
_CLIENT_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def _request_id(request: Request) -> str:
    """Reuse a well-formed id from a proxy, otherwise mint one."""
    supplied = request.headers.get(REQUEST_ID_HEADER, "")
    if _CLIENT_REQUEST_ID.match(supplied):
        return supplied
    return uuid.uuid4().hex


def _log_fields(request: Request, status_code: int, latency_ms: float) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "request_id": request.state.request_id,
        "method": request.method,
        "path": request.url.path,
        "status_code": status_code,
        "latency_ms": round(latency_ms, 2),
    }
    for name in ("upload_outcome", "upload_reason", "stored_filename"):
        value = getattr(request.state, name, None)
        if value is not None:
            fields[name] = value
    return redact_for_log(fields)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.request_id = _request_id(request)
        start = time.perf_counter()
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000

        fields = _log_fields(request, response.status_code, latency_ms)
        if get_settings().log_json:
            logger.info(json.dumps({"event": "request", **fields}))
        else:
            logger.info(
                "%s %s -> %s in %.2fms%s",
                request.method,
                request.url.path,
                response.status_code,
                latency_ms,
                f" [{fields['upload_outcome']}]" if "upload_outcome" in fields else "",
                extra=fields,
            )
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        if request.url.path not in UNMETERED_PATHS:
            record_request(request.method, request.url.path, response.status_code, latency_ms / 1000.0)
        return response
