"""FastAPI dependencies: settings, the shared upload pipeline, metrics guard."""
import hmac
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from uploader.core.capabilities import detect_capabilities
from uploader.core.config import Settings, get_settings
from uploader.services.pipeline import UploadPipeline, build_pipeline


@lru_cache
def _default_pipeline() -> UploadPipeline:
    settings = get_settings()
    return build_pipeline(settings, detect_capabilities(settings))


def get_pipeline() -> UploadPipeline:
    """One pipeline per process, built from settings and the capabilities found at first use."""
    return _default_pipeline()


def require_metrics_access(
    settings: Settings = Depends(get_settings),
    x_metrics_secret: str | None = Header(None, alias="X-Metrics-Secret"),
) -> None:
    """Allow /metrics if no secret is configured (local), else require a matching X-Metrics-Secret."""
    if not settings.metrics_secret:
        return
    if not x_metrics_secret or not hmac.compare_digest(x_metrics_secret, settings.metrics_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing X-Metrics-Secret",
        )
