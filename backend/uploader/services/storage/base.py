"""Storage backend interface: flat namespace of '<base_id>.<ext>' files, exclusive publish."""
import shutil
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

# Receives a staging path inside the store and fills it with the final bytes
Writer = Callable[[Path], None]


class StorageBackend(ABC):
    """Abstract store: root management, cross-extension id lookup, exclusive writes."""

    @property
    @abstractmethod
    def root(self) -> Path:
        ...

    @abstractmethod
    def ensure_root(self) -> None:
        """Create the root if absent. Raise DirectoryUnwritableError if it cannot be created or written."""
        ...

    @abstractmethod
    def write_exclusive(self, filename: str, writer: Writer) -> Path:
        """Stage bytes via writer, then publish under filename without ever overwriting.

        Return the absolute final path. Raise StorageWriteError on any failure; nothing is
        left under filename or in staging when that happens. Exceptions raised by writer
        itself (other than OSError) propagate unchanged after cleanup.
        """
        ...

    def copy_from(self, filename: str, source: Path) -> Path:
        """Publish a plain byte copy of source under filename."""
        return self.write_exclusive(filename, lambda staging: shutil.copyfile(source, staging))
