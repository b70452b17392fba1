"""Upload admission pipeline.

received -> size_checked -> format_validated -> name_allocated -> stored -> completed,
with absorbing 'rejected' (client-caused) and 'server_error' (infrastructure) states.
Single pass: the only retry is the bounded loop inside name allocation.
"""
import logging
from dataclasses import dataclass
from pathlib import Path

from uploader.core.capabilities import Capabilities
from uploader.core.config import Settings
from uploader.core.errors import DirectoryUnwritableError, SanitizeError, SniffError, StorageWriteError
from uploader.core.outcomes import (
    ClientErrorReason,
    Completed,
    PipelineResult,
    PipelineState,
    Rejected,
    ServerError,
    ServerErrorReason,
    StoredAsset,
)
from uploader.core.sizes import format_megabytes
from uploader.services.format_validation import FormatValidator, sanitize_log_filename
from uploader.services.naming import AllocationExhausted, allocate_unique_base
from uploader.services.sanitizer import DEFAULT_MAX_IMAGE_PIXELS, ImageSanitizer, needs_sanitizing
from uploader.services.storage import StorageBackend, get_storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadRequest:
    """One received upload. temp_path is owned by the request and removed when it completes."""

    declared_filename: str
    size_bytes: int  # bytes actually received, not a client claim
    temp_path: Path
    content_type: str | None = None  # client header, informational only
    client_size_hint: int | None = None  # MAX_FILE_SIZE form field, never trusted


class UploadPipeline:
    """Immutable after construction; safe to share between concurrent requests."""

    def __init__(
        self,
        *,
        storage: StorageBackend,
        validator: FormatValidator,
        capabilities: Capabilities,
        max_upload_bytes: int,
        domain_prefix: str,
        url_scheme: str = "https",
        max_upload_label: str | None = None,
        name_allocation_attempts: int = 10,
        max_image_pixels: int = DEFAULT_MAX_IMAGE_PIXELS,
    ) -> None:
        self._storage = storage
        self._validator = validator
        self._capabilities = capabilities
        self._max_bytes = max_upload_bytes
        self._max_label = max_upload_label or format_megabytes(max_upload_bytes)
        self._domain_prefix = domain_prefix.rstrip("/")
        self._scheme = url_scheme
        self._attempts = name_allocation_attempts
        self._max_image_pixels = max_image_pixels

    @property
    def max_upload_bytes(self) -> int:
        return self._max_bytes

    @property
    def max_upload_label(self) -> str:
        return self._max_label

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    @property
    def allowed_extensions(self) -> frozenset[str]:
        return self._validator.allowed_extensions

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    def public_url(self, filename: str) -> str:
        return f"{self._scheme}://{self._domain_prefix}/{filename}"

    def run(self, upload: UploadRequest) -> PipelineResult:
        trail = [PipelineState.RECEIVED]

        def reject(outcome: Rejected) -> PipelineResult:
            logger.info(
                "Upload rejected (%s) at %s: %s",
                outcome.reason.value,
                trail[-1].value,
                sanitize_log_filename(upload.declared_filename),
            )
            return PipelineResult(outcome, tuple(trail) + (PipelineState.REJECTED,))

        def fail(reason: ServerErrorReason, detail: str) -> PipelineResult:
            logger.error("Upload failed (%s) at %s: %s", reason.value, trail[-1].value, detail)
            return PipelineResult(ServerError(reason, detail), tuple(trail) + (PipelineState.SERVER_ERROR,))

        # received -> size_checked
        if upload.size_bytes > self._max_bytes:
            return reject(Rejected(
                ClientErrorReason.TOO_LARGE,
                f"File size ({format_megabytes(upload.size_bytes)}) exceeds limit of {self._max_label}.",
            ))
        trail.append(PipelineState.SIZE_CHECKED)

        # size_checked -> format_validated
        try:
            validation = self._validator.validate(upload.declared_filename, upload.temp_path)
        except SniffError as e:
            return fail(ServerErrorReason.SNIFF_FAILED, str(e))
        if isinstance(validation, Rejected):
            return reject(validation)
        extension = validation.extension
        trail.append(PipelineState.FORMAT_VALIDATED)

        sanitize = needs_sanitizing(extension) and self._capabilities.image_sanitizing
        if needs_sanitizing(extension) and not sanitize and self._capabilities.require_image_sanitizing:
            return fail(ServerErrorReason.SANITIZE_UNAVAILABLE, f"Refusing unsanitized .{extension} upload")

        # format_validated -> name_allocated
        try:
            self._storage.ensure_root()
        except DirectoryUnwritableError as e:
            return fail(ServerErrorReason.DIRECTORY_UNWRITABLE, str(e))
        allocation = allocate_unique_base(self._storage.root, max_attempts=self._attempts)
        if isinstance(allocation, AllocationExhausted):
            return fail(
                ServerErrorReason.EXHAUSTED_ATTEMPTS,
                f"Could not generate a unique filename after {allocation.attempts} attempts",
            )
        filename = f"{allocation.base_id}.{extension}"
        trail.append(PipelineState.NAME_ALLOCATED)

        # name_allocated -> stored
        try:
            if sanitize:
                sanitizer = ImageSanitizer(extension, max_pixels=self._max_image_pixels)
                path = self._storage.write_exclusive(
                    filename, lambda staging: sanitizer.sanitize(upload.temp_path, staging)
                )
            else:
                if needs_sanitizing(extension):
                    logger.warning("Storing .%s upload %s without sanitizing (Pillow unavailable)", extension, filename)
                path = self._storage.copy_from(filename, upload.temp_path)
        except SanitizeError as e:
            return fail(ServerErrorReason.SANITIZE_FAILED, str(e))
        except StorageWriteError as e:
            return fail(ServerErrorReason.STORAGE_WRITE_FAILED, str(e))
        trail.append(PipelineState.STORED)

        # stored -> completed
        asset = StoredAsset(
            base_id=allocation.base_id,
            extension=extension,
            absolute_path=path,
            public_url=self.public_url(filename),
        )
        trail.append(PipelineState.COMPLETED)
        logger.info(
            "Stored upload %s as %s (%d bytes received, sanitized=%s)",
            sanitize_log_filename(upload.declared_filename),
            filename,
            upload.size_bytes,
            sanitize,
        )
        return PipelineResult(Completed(asset, sanitized=sanitize), tuple(trail))


def build_pipeline(settings: Settings, capabilities: Capabilities) -> UploadPipeline:
    """Wire the pipeline from configuration and the detected capabilities."""
    return UploadPipeline(
        storage=get_storage(settings),
        validator=FormatValidator(settings.allowed_extension_set, capabilities),
        capabilities=capabilities,
        max_upload_bytes=settings.max_upload_bytes,
        max_upload_label=settings.max_upload_size,
        domain_prefix=settings.domain_prefix,
        url_scheme=settings.url_scheme,
        name_allocation_attempts=settings.name_allocation_attempts,
        max_image_pixels=settings.max_image_pixels,
    )
