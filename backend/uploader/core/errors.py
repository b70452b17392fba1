"""Exceptions raised inside the storage/sanitize steps. The pipeline converts them to ServerError outcomes."""


class UploadError(Exception):
    """Base class for failures while persisting an accepted upload."""


class SanitizeError(UploadError):
    """Image could not be decoded for re-encoding (corrupt or non-conformant despite MIME sniffing)."""


class StorageWriteError(UploadError):
    """Writing the cleaned or copied file failed (disk full, permissions, name taken)."""


class DirectoryUnwritableError(UploadError):
    """Storage root is missing and cannot be created, or cannot be written to."""


class SniffError(UploadError):
    """libmagic could not inspect the received bytes."""
