"""Typed results of the upload pipeline: reasons, validation outcomes, stored assets."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ClientErrorReason(str, Enum):
    """Rejections caused by the upload itself. Reported to the caller as-is."""

    TOO_LARGE = "too_large"
    DISALLOWED_EXTENSION = "disallowed_extension"
    CONTENT_MISMATCH = "content_mismatch"
    NO_FILE_PROVIDED = "no_file_provided"


class ServerErrorReason(str, Enum):
    """Infrastructure failures. Logged in full, reported to the caller generically."""

    EXHAUSTED_ATTEMPTS = "exhausted_attempts"
    STORAGE_WRITE_FAILED = "storage_write_failed"
    SANITIZE_FAILED = "sanitize_failed"
    DIRECTORY_UNWRITABLE = "directory_unwritable"
    SANITIZE_UNAVAILABLE = "sanitize_unavailable"
    SNIFF_FAILED = "sniff_failed"


class PipelineState(str, Enum):
    RECEIVED = "received"
    SIZE_CHECKED = "size_checked"
    FORMAT_VALIDATED = "format_validated"
    NAME_ALLOCATED = "name_allocated"
    STORED = "stored"
    COMPLETED = "completed"
    REJECTED = "rejected"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class Accepted:
    extension: str
    mime_type: str | None = None  # None when content sniffing is unavailable


@dataclass(frozen=True)
class Rejected:
    reason: ClientErrorReason
    message: str
    declared_extension: str | None = None
    sniffed_mime: str | None = None


@dataclass(frozen=True)
class ServerError:
    reason: ServerErrorReason
    # Internal detail for logs only; may contain paths. Never returned to clients.
    detail: str = ""


@dataclass(frozen=True)
class StoredAsset:
    base_id: str
    extension: str
    absolute_path: Path
    public_url: str

    @property
    def filename(self) -> str:
        return f"{self.base_id}.{self.extension}"


@dataclass(frozen=True)
class Completed:
    asset: StoredAsset
    sanitized: bool = False


ValidationOutcome = Accepted | Rejected
UploadOutcome = Completed | Rejected | ServerError


@dataclass(frozen=True)
class PipelineResult:
    """Terminal outcome of one pipeline run plus the states it passed through."""

    outcome: UploadOutcome
    trail: tuple[PipelineState, ...] = field(default_factory=tuple)

    @property
    def state(self) -> PipelineState:
        return self.trail[-1]

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Completed)
