"""Uploads: POST /upload (admission pipeline), GET / (upload form), GET /status (capabilities)."""
import html

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import HTMLResponse
from starlette.concurrency import run_in_threadpool

from uploader.api.schemas import CapabilityStatus, StatusResponse, UploadErrorDetail, UploadResponse
from uploader.core.config import Settings, get_settings
from uploader.core.deps import get_pipeline
from uploader.core.metrics import record_upload_rejected, record_upload_server_error, record_upload_stored
from uploader.core.outcomes import ClientErrorReason, Completed, Rejected, ServerErrorReason
from uploader.core.sizes import parse_bytes
from uploader.services.intake import spool_upload
from uploader.services.pipeline import UploadPipeline

router = APIRouter(tags=["uploads"])

UPLOAD_FIELD = "upload_file"

_CLIENT_STATUS = {
    ClientErrorReason.NO_FILE_PROVIDED: status.HTTP_400_BAD_REQUEST,
    ClientErrorReason.TOO_LARGE: 413,
    ClientErrorReason.DISALLOWED_EXTENSION: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    ClientErrorReason.CONTENT_MISMATCH: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
}
_SERVER_STATUS = {
    ServerErrorReason.SANITIZE_FAILED: 422,
    ServerErrorReason.SANITIZE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}
# Server-side failures never echo internal detail (paths, errno) to the client
_SERVER_MESSAGES = {
    ServerErrorReason.SANITIZE_FAILED: "The image could not be processed.",
    ServerErrorReason.SANITIZE_UNAVAILABLE: "Image uploads are temporarily unavailable.",
}
_GENERIC_SERVER_MESSAGE = "Upload failed due to a server error."


def _upload_error(status_code: int, code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=UploadErrorDetail(error=code, message=message).model_dump(),
    )


@router.post("/upload", response_model=UploadResponse)
async def post_upload(
    request: Request,
    upload_file: UploadFile | None = File(None),
    max_file_size: str | None = Form(None, alias="MAX_FILE_SIZE"),
    pipeline: UploadPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    if upload_file is None or not (upload_file.filename or "").strip():
        request.state.upload_outcome = "rejected"
        request.state.upload_reason = ClientErrorReason.NO_FILE_PROVIDED.value
        record_upload_rejected(ClientErrorReason.NO_FILE_PROVIDED.value)
        raise _upload_error(
            _CLIENT_STATUS[ClientErrorReason.NO_FILE_PROVIDED],
            ClientErrorReason.NO_FILE_PROVIDED.value,
            "No file was provided.",
        )
    # Client-side MAX_FILE_SIZE is advisory only; the server limit is authoritative
    hint = parse_bytes(max_file_size) if max_file_size else None
    async with spool_upload(upload_file, pipeline.max_upload_bytes, settings.incoming_dir, hint) as upload:
        result = await run_in_threadpool(pipeline.run, upload)
    request.state.upload_outcome = result.state.value
    outcome = result.outcome

    if isinstance(outcome, Completed):
        record_upload_stored(upload.size_bytes)
        asset = outcome.asset
        request.state.stored_filename = asset.filename
        return UploadResponse(
            url=asset.public_url,
            base_id=asset.base_id,
            extension=asset.extension,
            filename=asset.filename,
            sanitized=outcome.sanitized,
        )
    if isinstance(outcome, Rejected):
        request.state.upload_reason = outcome.reason.value
        record_upload_rejected(outcome.reason.value)
        raise _upload_error(_CLIENT_STATUS[outcome.reason], outcome.reason.value, outcome.message)
    request.state.upload_reason = outcome.reason.value
    record_upload_server_error(outcome.reason.value)
    raise _upload_error(
        _SERVER_STATUS.get(outcome.reason, status.HTTP_500_INTERNAL_SERVER_ERROR),
        outcome.reason.value,
        _SERVER_MESSAGES.get(outcome.reason, _GENERIC_SERVER_MESSAGE),
    )


@router.get("/status", response_model=StatusResponse)
async def upload_status(pipeline: UploadPipeline = Depends(get_pipeline)):
    """Operator surface: which protections are active. Degraded means uploads are accepted with a wider gap."""
    caps = pipeline.capabilities
    return StatusResponse(
        status="degraded" if caps.degraded else "ok",
        capabilities=CapabilityStatus(
            content_sniffing=caps.content_sniffing,
            image_sanitizing=caps.image_sanitizing,
            require_image_sanitizing=caps.require_image_sanitizing,
        ),
        advisories=caps.advisories(),
        allowed_extensions=sorted(pipeline.allowed_extensions),
        max_upload_size=pipeline.max_upload_label,
        max_upload_bytes=pipeline.max_upload_bytes,
    )


_FORM_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{title}</title>
</head>
<body>
<h1>{title}</h1>
{advisories}
<form method="POST" action="/upload" enctype="multipart/form-data">
<label for="{field}">Select File ({extensions}, Max {max_label}):</label>
<input type="hidden" name="MAX_FILE_SIZE" value="{max_bytes}">
<input type="file" name="{field}" id="{field}" required>
<button type="submit">Upload File</button>
</form>
<p>Generated URL format: <code>{url_format}</code><br>
Base name uniqueness is guaranteed across all extensions.</p>
</body>
</html>
"""


@router.get("/", response_class=HTMLResponse)
async def upload_form(
    pipeline: UploadPipeline = Depends(get_pipeline),
    settings: Settings = Depends(get_settings),
):
    advisories = "\n".join(
        f'<p class="advisory">WARNING: {html.escape(message)}</p>'
        for message in pipeline.capabilities.advisories()
    )
    return _FORM_PAGE.format(
        title=html.escape(settings.app_name),
        advisories=advisories,
        field=UPLOAD_FIELD,
        extensions=html.escape(", ".join(f".{ext}" for ext in sorted(pipeline.allowed_extensions))),
        max_label=html.escape(pipeline.max_upload_label),
        max_bytes=pipeline.max_upload_bytes,
        url_format=html.escape(pipeline.public_url("randomizedurl.fileextension")),
    )
