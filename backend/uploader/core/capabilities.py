"""Runtime capabilities: content sniffing (libmagic) and image sanitizing (Pillow).

Missing capabilities do not reject uploads; they widen the security gap and are
surfaced to operators as advisories (startup log, upload form, /status).
"""
import importlib
import logging
from dataclasses import dataclass

from uploader.core.config import Settings

logger = logging.getLogger(__name__)

SNIFFING_UNAVAILABLE = (
    "Content sniffing (libmagic) is unavailable. Uploads are checked by extension only; "
    "file contents are not verified."
)
SANITIZING_UNAVAILABLE = (
    "Image sanitizing (Pillow) is unavailable. PNG files are stored as uploaded and may carry "
    "hidden metadata or steganographic payloads."
)
SANITIZING_REQUIRED = (
    "Image sanitizing (Pillow) is unavailable and required. PNG uploads will be refused."
)


@dataclass(frozen=True)
class Capabilities:
    content_sniffing: bool
    image_sanitizing: bool
    require_image_sanitizing: bool = False

    def advisories(self) -> list[str]:
        out = []
        if not self.content_sniffing:
            out.append(SNIFFING_UNAVAILABLE)
        if not self.image_sanitizing:
            out.append(SANITIZING_REQUIRED if self.require_image_sanitizing else SANITIZING_UNAVAILABLE)
        return out

    @property
    def degraded(self) -> bool:
        return bool(self.advisories())


def _module_loads(name: str) -> bool:
    """True if the module imports. python-magic raises ImportError when libmagic itself is missing."""
    try:
        importlib.import_module(name)
    except ImportError as e:
        logger.warning("Optional module %s could not be loaded: %s", name, e)
        return False
    return True


def detect_capabilities(settings: Settings) -> Capabilities:
    return Capabilities(
        content_sniffing=settings.enable_content_sniffing and _module_loads("magic"),
        image_sanitizing=settings.enable_image_sanitizing and _module_loads("PIL.Image"),
        require_image_sanitizing=settings.require_image_sanitizing,
    )


def log_advisories(capabilities: Capabilities) -> None:
    for message in capabilities.advisories():
        logger.warning("SECURITY ADVISORY: %s", message)
