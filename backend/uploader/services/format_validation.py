"""Upload validation: extension allowlist, then MIME type sniffed from the bytes themselves."""
import logging
import re
from collections.abc import Callable, Iterable
from pathlib import Path

from uploader.core.capabilities import Capabilities
from uploader.core.errors import SniffError
from uploader.core.outcomes import Accepted, ClientErrorReason, Rejected, ValidationOutcome

logger = logging.getLogger(__name__)

# Extension -> MIME types libmagic may report for genuine content of that type.
# octet-stream for zip: some zip-based containers are ambiguous at the byte-sniffing level.
ACCEPTED_MIME_TYPES: dict[str, frozenset[str]] = {
    "png": frozenset({"image/png"}),
    "zip": frozenset({"application/zip", "application/x-zip-compressed", "application/octet-stream"}),
}

Sniffer = Callable[[Path], str]


def basename(filename: str | None) -> str:
    """Client filename without any path components (either separator)."""
    if not filename or not filename.strip():
        return ""
    return filename.strip().split("/")[-1].split("\\")[-1]


def sanitize_log_filename(filename: str | None) -> str:
    """Client filename safe for a log line: no path, no control chars, bounded length."""
    safe = re.sub(r"[^\w\-. ]", "_", basename(filename))
    return safe[:200]


def extract_extension(filename: str | None) -> str:
    """Lower-cased text after the last dot of the basename; '' if there is no dot."""
    base = basename(filename)
    if "." not in base:
        return ""
    return base.rsplit(".", 1)[1].strip().lower()


def sniff_mime_type(path: Path) -> str:
    """MIME type from file content via libmagic. Never looks at the name.

    Raises SniffError when libmagic or the file read fails.
    """
    import magic

    try:
        return magic.from_file(str(path), mime=True)
    except (magic.MagicException, OSError) as e:
        raise SniffError(f"Could not sniff MIME type: {e}") from e


class FormatValidator:
    """Extension gate then content gate; first failure wins. Pure inspection, no side effects.

    validate() lets SniffError from the sniffer propagate; it is an infrastructure failure, not a verdict.
    """

    def __init__(
        self,
        allowed_extensions: Iterable[str],
        capabilities: Capabilities,
        sniffer: Sniffer | None = None,
    ) -> None:
        self._allowed = frozenset(ext.lower() for ext in allowed_extensions)
        unmapped = sorted(self._allowed - ACCEPTED_MIME_TYPES.keys())
        if unmapped:
            raise ValueError(f"No accepted MIME types known for extensions: {', '.join(unmapped)}")
        self._sniff = (sniffer or sniff_mime_type) if capabilities.content_sniffing else None

    @property
    def allowed_extensions(self) -> frozenset[str]:
        return self._allowed

    @property
    def sniffs_content(self) -> bool:
        return self._sniff is not None

    def validate(self, declared_filename: str | None, source_path: Path) -> ValidationOutcome:
        ext = extract_extension(declared_filename)
        if ext not in self._allowed:
            return Rejected(
                ClientErrorReason.DISALLOWED_EXTENSION,
                f"Only {', '.join(sorted(self._allowed))} files are allowed.",
                declared_extension=ext or None,
            )
        if self._sniff is None:
            # Degraded mode: extension check alone stands (advertised at startup / on /status)
            return Accepted(ext)
        mime_type = self._sniff(Path(source_path))
        if mime_type not in ACCEPTED_MIME_TYPES[ext]:
            logger.info(
                "Content mismatch: declared .%s, sniffed %s (file %s)",
                ext,
                mime_type,
                sanitize_log_filename(declared_filename),
            )
            return Rejected(
                ClientErrorReason.CONTENT_MISMATCH,
                f"Invalid file content (MIME type {mime_type}).",
                declared_extension=ext,
                sniffed_mime=mime_type,
            )
        return Accepted(ext, mime_type)
