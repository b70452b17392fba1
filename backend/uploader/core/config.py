"""Application settings."""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings

from uploader.core.sizes import parse_bytes


class Settings(BaseSettings):
    """App config from env."""

    app_name: str = "Secure File Uploader"
    debug: bool = False
    # Structured logging: set LOG_JSON=1 for one-JSON-object-per-line (CloudWatch, etc.)
    log_json: bool = False
    log_level: str = "INFO"
    # If set, /metrics requires the X-Metrics-Secret header; unset = open (local dev)
    metrics_secret: str | None = None

    # Public URL: {url_scheme}://{domain_prefix}/{base_id}.{ext}. No trailing slash.
    domain_prefix: str = "i.example.com"
    url_scheme: str = "https"

    # Flat storage directory, created on demand. No trailing slash.
    storage_root: str = "./i"
    # Request-scoped temp files while the upload is being checked (None = system temp dir)
    incoming_dir: str | None = None

    # Upload validation
    allowed_extensions: str = "png,zip"
    max_upload_size: str = "8M"  # K/M/G suffixes, 1024-based
    name_allocation_attempts: int = 10
    max_image_pixels: int = 40_000_000  # PNGs decoding to more pixels are refused

    # Capability switches. A capability is used only if enabled here AND its library loads.
    enable_content_sniffing: bool = True  # libmagic (python-magic)
    enable_image_sanitizing: bool = True  # Pillow re-encode
    # Strict mode: refuse PNGs instead of storing them unsanitized when Pillow is unavailable
    require_image_sanitizing: bool = False

    # CORS (comma-separated allowlist; empty = no cross-origin access)
    cors_origins: str = ""

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator("domain_prefix", "storage_root")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        stripped = value.strip().rstrip("/")
        return stripped or value.strip()

    @property
    def allowed_extension_set(self) -> frozenset[str]:
        return frozenset(
            ext.strip().lower().lstrip(".")
            for ext in self.allowed_extensions.split(",")
            if ext.strip()
        )

    @property
    def max_upload_bytes(self) -> int:
        return parse_bytes(self.max_upload_size)


@lru_cache
def get_settings() -> Settings:
    return Settings()
