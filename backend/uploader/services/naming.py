"""Unguessable base ids for stored files, unique across every extension in the storage root."""
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

BASE_ID_BYTES = 10  # 80 bits of entropy
BASE_ID_LENGTH = 2 * BASE_ID_BYTES
DEFAULT_MAX_ATTEMPTS = 10


@dataclass(frozen=True)
class Allocated:
    base_id: str


@dataclass(frozen=True)
class AllocationExhausted:
    attempts: int


AllocationResult = Allocated | AllocationExhausted


def generate_candidate() -> str:
    """20 lowercase hex chars from the OS CSPRNG."""
    return secrets.token_hex(BASE_ID_BYTES)[:BASE_ID_LENGTH]


def base_id_in_use(storage_root: Path, base_id: str) -> bool:
    """True if any '<base_id>.<ext>' exists, whatever the extension."""
    return any(Path(storage_root).glob(f"{base_id}.*"))


def allocate_unique_base(
    storage_root: Path,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    generate: Callable[[], str] = generate_candidate,
) -> AllocationResult:
    """Return a base id with no existing file of any extension, or AllocationExhausted.

    Exhaustion should never happen with 80-bit ids; it points at a misbehaving
    generator or a storage directory that is not what it seems.
    """
    for attempt in range(1, max_attempts + 1):
        candidate = generate()
        if not base_id_in_use(storage_root, candidate):
            return Allocated(candidate)
        logger.warning("Base id collision on attempt %d/%d", attempt, max_attempts)
    return AllocationExhausted(max_attempts)
