"""FastAPI app: security headers, request logging, upload routes, health and metrics."""
import json
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from uploader.api.uploads import router as uploads_router
from uploader.core.capabilities import log_advisories
from uploader.core.config import get_settings
from uploader.core.deps import get_pipeline, require_metrics_access
from uploader.core.errors import DirectoryUnwritableError
from uploader.core.metrics import get_metrics
from uploader.core.request_logging import RequestLoggingMiddleware
from uploader.services.pipeline import UploadPipeline


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; messages that are already JSON (request lines) pass through."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        if message.startswith("{"):
            return message
        return json.dumps({
            "level": record.levelname,
            "logger": record.name,
            "message": message,
        })


settings = get_settings()
_root_logger = logging.getLogger("uploader")
_root_logger.setLevel(settings.log_level.upper())
if not _root_logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(_JsonFormatter() if settings.log_json else logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    _root_logger.addHandler(h)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Degraded protections are an operator concern: log them once at startup, loudly."""
    log_advisories(get_pipeline().capabilities)
    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins.split(","),
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )


@app.middleware("http")
async def security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none';"
    response.headers["Permissions-Policy"] = "accelerometer=(), camera=(), geolocation=(), microphone=(), payment=(), usb=()"
    return response


app.include_router(uploads_router)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    """Liveness: no storage access."""
    return {"status": "ok"}


@app.get("/readyz")
async def readyz(pipeline: UploadPipeline = Depends(get_pipeline)):
    """Readiness: storage root exists (or can be created) and is writable."""
    try:
        pipeline.storage.ensure_root()
    except DirectoryUnwritableError:
        logging.getLogger(__name__).exception("Storage root not ready")
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "detail": "storage unavailable"},
        )
    return {"status": "ok"}


@app.get("/metrics", response_class=Response)
async def metrics(_: None = Depends(require_metrics_access)):
    """Prometheus metrics. Guard with METRICS_SECRET + X-Metrics-Secret header outside local dev."""
    body, content_type = get_metrics()
    return Response(content=body, media_type=content_type)
