"""Storage backend factory. Only the local flat-directory store is supported."""
from uploader.core.config import Settings
from uploader.services.storage.base import StorageBackend
from uploader.services.storage.local import LocalStorage


def get_storage(settings: Settings) -> StorageBackend:
    """Return the storage backend rooted at settings.storage_root."""
    return LocalStorage(settings.storage_root)
