"""
Python client for the upload API: upload local files, read the server's capability status.
Retries transport errors and 5xx responses with exponential backoff; 4xx rejections are final.
"""
import mimetypes
import time
from pathlib import Path

import httpx

UPLOAD_FIELD = "upload_file"


class UploadRejected(Exception):
    """Server refused the file (4xx). error is the machine-readable reason code."""

    def __init__(self, status_code: int, error: str, message: str):
        super().__init__(f"{error}: {message}")
        self.status_code = status_code
        self.error = error
        self.message = message


class UploadClient:
    """Client for POST /upload and GET /status."""

    def __init__(self, base_url: str, timeout: float = 60.0, max_retries: int = 5):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self._session: httpx.Client | None = None

    def _get_session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                follow_redirects=True,
            )
        return self._session

    def status(self) -> dict:
        """Capabilities, advisories, allowed extensions and size limit."""
        r = self._get_session().get("/status")
        r.raise_for_status()
        return r.json()

    def upload(self, path: str | Path) -> dict:
        """Upload one file. Returns { url, base_id, extension, filename, sanitized }."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)
        body = path.read_bytes()
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        r = self._post_with_retry(path.name, body, content_type)
        if 400 <= r.status_code < 500:
            detail = _error_detail(r)
            raise UploadRejected(r.status_code, detail.get("error", "rejected"), detail.get("message", r.text))
        r.raise_for_status()
        return r.json()

    def _post_with_retry(self, filename: str, body: bytes, content_type: str) -> httpx.Response:
        last_err: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                r = self._get_session().post(
                    "/upload",
                    files={UPLOAD_FIELD: (filename, body, content_type)},
                )
                if r.status_code < 500 or attempt == self.max_retries - 1:
                    return r
                last_err = httpx.HTTPStatusError(f"Server error {r.status_code}", request=r.request, response=r)
            except httpx.TransportError as e:
                last_err = e
                if attempt == self.max_retries - 1:
                    raise
            backoff = (2**attempt) + (time.time() % 1)  # exponential backoff + jitter
            time.sleep(backoff)
        raise last_err or RuntimeError("upload was not attempted")

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None

    def __enter__(self) -> "UploadClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _error_detail(r: httpx.Response) -> dict:
    try:
        detail = r.json().get("detail")
    except ValueError:
        return {}
    return detail if isinstance(detail, dict) else {"message": str(detail)}
