"""Strip hidden payloads from images by a decode -> encode round trip.

Only pixel data (plus palette and transparency, which rendering needs) survives;
text chunks, EXIF, ICC profiles, custom chunks and anything after IEND are gone.

Pillow is imported on first use so the service still starts, in degraded mode,
where it is not installed.
"""
import logging
import warnings
from pathlib import Path

from uploader.core.errors import SanitizeError, StorageWriteError

logger = logging.getLogger(__name__)

# Extensions whose containers can hide data that format validation cannot see -> Pillow format
SANITIZED_FORMATS: dict[str, str] = {
    "png": "PNG",
}

# Decoding plus the pixel copy holds about three full frames in memory
DEFAULT_MAX_IMAGE_PIXELS = 40_000_000


def needs_sanitizing(extension: str) -> bool:
    return extension in SANITIZED_FORMATS


def _rebuild_from_pixels(img):
    """New image carrying only mode, size, pixels, palette; plus save params for transparency."""
    from PIL import Image

    clean = Image.frombytes(img.mode, img.size, img.tobytes())
    if img.mode in ("P", "PA"):
        palette = img.getpalette()
        if palette is not None:
            clean.putpalette(palette)
    params = {}
    if "transparency" in img.info:
        params["transparency"] = img.info["transparency"]
    return clean, params


class ImageSanitizer:
    """Re-encodes images in their declared format. Callers pick the format via the upload's extension."""

    def __init__(self, extension: str = "png", max_pixels: int = DEFAULT_MAX_IMAGE_PIXELS) -> None:
        if extension not in SANITIZED_FORMATS:
            raise ValueError(f"No sanitizer for extension: {extension}")
        self._format = SANITIZED_FORMATS[extension]
        self._max_pixels = max_pixels

    def sanitize(self, source_path: Path, target_path: Path) -> None:
        """Decode source_path as the declared format and write the clean re-encode to target_path.

        Raises SanitizeError if decoding fails or the image is larger than max_pixels,
        StorageWriteError if writing fails.
        """
        from PIL import Image

        try:
            with warnings.catch_warnings():
                warnings.simplefilter("error", Image.DecompressionBombWarning)
                with Image.open(source_path, formats=[self._format]) as img:
                    width, height = img.size
                    if width * height > self._max_pixels:
                        raise SanitizeError(
                            f"{self._format} image is {width}x{height}, over the {self._max_pixels} pixel limit"
                        )
                    img.load()
                    clean, params = _rebuild_from_pixels(img)
        except (OSError, SyntaxError, ValueError, Image.DecompressionBombError, Image.DecompressionBombWarning) as e:
            raise SanitizeError(f"Could not decode {self._format} image: {e}") from e
        try:
            clean.save(target_path, format=self._format, **params)
        except OSError as e:
            raise StorageWriteError(f"Could not write sanitized {self._format} image: {e}") from e
        finally:
            clean.close()
        logger.debug("Re-encoded %s image %s -> %s", self._format, source_path, target_path)
