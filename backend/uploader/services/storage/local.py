"""Local disk storage: one flat directory; staged dot-files published by hard link (never overwrites)."""
import logging
import os
import tempfile
from pathlib import Path

from uploader.core.errors import DirectoryUnwritableError, StorageWriteError
from uploader.services.storage.base import StorageBackend, Writer

logger = logging.getLogger(__name__)

DIR_MODE = 0o755
FILE_MODE = 0o644
# Staging files start with a dot so they can never match the '<base_id>.*' uniqueness glob
STAGING_PREFIX = ".staging-"


class LocalStorage(StorageBackend):
    """Flat directory store served as-is by a web server at the public domain prefix."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    @property
    def root(self) -> Path:
        return self._root

    def ensure_root(self) -> None:
        try:
            self._root.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        except OSError as e:
            raise DirectoryUnwritableError(f"Cannot create storage root {self._root}: {e}") from e
        if not self._root.is_dir() or not os.access(self._root, os.W_OK | os.X_OK):
            raise DirectoryUnwritableError(f"Storage root {self._root} is not a writable directory")

    def path_for(self, filename: str) -> Path:
        path = self._root / filename
        if path.parent != self._root:
            raise ValueError(f"Refusing nested storage path: {filename!r}")
        return path

    def write_exclusive(self, filename: str, writer: Writer) -> Path:
        target = self.path_for(filename)
        try:
            fd, staging_name = tempfile.mkstemp(dir=self._root, prefix=STAGING_PREFIX, suffix=".part")
            os.close(fd)
        except OSError as e:
            raise StorageWriteError(f"Cannot create staging file in {self._root}: {e}") from e
        staging = Path(staging_name)
        try:
            writer(staging)
            os.chmod(staging, FILE_MODE)
            # link() fails with FileExistsError instead of replacing an existing asset
            os.link(staging, target)
        except FileExistsError as e:
            raise StorageWriteError(f"Refusing to overwrite existing file {target}") from e
        except OSError as e:
            raise StorageWriteError(f"Failed to store {target}: {e}") from e
        finally:
            staging.unlink(missing_ok=True)
        return target

