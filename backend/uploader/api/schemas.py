"""Pydantic response schemas for the upload API."""
from pydantic import BaseModel, ConfigDict


def _config_forbid(**kwargs):
    return ConfigDict(extra="forbid", **kwargs)


class UploadResponse(BaseModel):
    model_config = _config_forbid()
    url: str
    base_id: str
    extension: str
    filename: str
    sanitized: bool


class UploadErrorDetail(BaseModel):
    """Body of HTTPException.detail for failed uploads: machine-readable code + human message."""

    model_config = _config_forbid()
    error: str
    message: str


class CapabilityStatus(BaseModel):
    model_config = _config_forbid()
    content_sniffing: bool
    image_sanitizing: bool
    require_image_sanitizing: bool


class StatusResponse(BaseModel):
    model_config = _config_forbid()
    status: str  # ok | degraded
    capabilities: CapabilityStatus
    advisories: list[str]
    allowed_extensions: list[str]
    max_upload_size: str
    max_upload_bytes: int
