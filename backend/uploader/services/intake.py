"""Spool a multipart upload into a request-scoped temp file and measure its real size."""
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from uploader.services.pipeline import UploadRequest

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


@asynccontextmanager
async def spool_upload(
    file: UploadFile,
    max_bytes: int,
    incoming_dir: str | None = None,
    client_size_hint: int | None = None,
) -> AsyncIterator[UploadRequest]:
    """Yield an UploadRequest backed by a temp copy of the upload; the copy is removed on exit.

    Bytes beyond max_bytes are counted but not written, so an oversized upload still reports
    its true size without filling the disk.
    """
    if incoming_dir:
        Path(incoming_dir).mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix="upload-", suffix=".tmp", dir=incoming_dir)
    temp_path = Path(temp_name)
    try:
        size = 0
        with os.fdopen(fd, "wb") as out:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                if size + len(chunk) <= max_bytes:
                    await run_in_threadpool(out.write, chunk)
                size += len(chunk)
        if client_size_hint is not None and client_size_hint != max_bytes:
            logger.debug("Ignoring client MAX_FILE_SIZE hint %s (server limit %s)", client_size_hint, max_bytes)
        yield UploadRequest(
            declared_filename=file.filename or "",
            size_bytes=size,
            temp_path=temp_path,
            content_type=file.content_type,
            client_size_hint=client_size_hint,
        )
    finally:
        temp_path.unlink(missing_ok=True)
