"""Upload pipeline state machine: every terminal state, no partial files left behind."""
import errno
import io
import os
import re
import subprocess
import sys
import textwrap

from PIL import Image

from conftest import DOMAIN, NO_SANITIZING, NO_SNIFFING, make_png, make_zip, stored_files
from uploader.core.capabilities import Capabilities
from uploader.core.errors import SniffError
from uploader.core.outcomes import (
    ClientErrorReason,
    Completed,
    PipelineState,
    Rejected,
    ServerError,
    ServerErrorReason,
)
from uploader.services.naming import AllocationExhausted
from uploader.services.pipeline import build_pipeline

URL_RE = re.compile(rf"^https://{re.escape(DOMAIN)}/([0-9a-f]{{20}})\.(png|zip)$")


def test_png_upload_completes_with_public_url(pipeline, make_upload, png_bytes, storage_root):
    result = pipeline.run(make_upload("holiday.png", png_bytes))

    assert result.ok
    assert result.trail == (
        PipelineState.RECEIVED,
        PipelineState.SIZE_CHECKED,
        PipelineState.FORMAT_VALIDATED,
        PipelineState.NAME_ALLOCATED,
        PipelineState.STORED,
        PipelineState.COMPLETED,
    )
    asset = result.outcome.asset
    match = URL_RE.match(asset.public_url)
    assert match and match.group(1) == asset.base_id and match.group(2) == "png"
    assert result.outcome.sanitized is True
    assert asset.absolute_path.is_file()
    assert stored_files(storage_root) == [asset.filename]


def test_storage_root_created_on_demand(pipeline, make_upload, zip_bytes, storage_root):
    assert not storage_root.exists()
    assert pipeline.run(make_upload("a.zip", zip_bytes)).ok
    assert storage_root.is_dir()


def test_too_large_rejected_before_anything_else(make_pipeline, make_upload, zip_bytes, storage_root):
    pipeline = make_pipeline(max_upload_bytes=len(zip_bytes) - 1)
    result = pipeline.run(make_upload("a.zip", zip_bytes))

    assert isinstance(result.outcome, Rejected)
    assert result.outcome.reason == ClientErrorReason.TOO_LARGE
    assert result.trail == (PipelineState.RECEIVED, PipelineState.REJECTED)
    assert "exceeds limit of 1M" in result.outcome.message
    assert not storage_root.exists()


def test_size_at_limit_is_accepted(make_pipeline, make_upload, zip_bytes):
    pipeline = make_pipeline(max_upload_bytes=len(zip_bytes))
    assert pipeline.run(make_upload("a.zip", zip_bytes)).ok


def test_exe_rejected_as_disallowed_extension(pipeline, make_upload, storage_root):
    result = pipeline.run(make_upload("setup.exe", b"MZ\x90\x00\x03"))

    assert isinstance(result.outcome, Rejected)
    assert result.outcome.reason == ClientErrorReason.DISALLOWED_EXTENSION
    assert result.state == PipelineState.REJECTED
    assert PipelineState.SIZE_CHECKED in result.trail
    assert stored_files(storage_root) == []


def test_zip_named_png_rejected_as_content_mismatch(pipeline, make_upload, zip_bytes, storage_root):
    result = pipeline.run(make_upload("x.png", zip_bytes))

    assert isinstance(result.outcome, Rejected)
    assert result.outcome.reason == ClientErrorReason.CONTENT_MISMATCH
    assert result.outcome.sniffed_mime == "application/zip"
    assert stored_files(storage_root) == []


def test_zip_named_png_accepted_without_sniffing(make_pipeline, make_upload, zip_bytes):
    result = make_pipeline(capabilities=Capabilities(content_sniffing=False, image_sanitizing=False)).run(
        make_upload("x.png", zip_bytes)
    )
    assert result.ok
    assert result.outcome.asset.absolute_path.read_bytes() == zip_bytes


def test_png_trailing_payload_stripped(pipeline, make_upload):
    original = make_png(size=(10, 10))
    payload = b"PK\x03\x04 smuggled archive bytes" * 10
    result = pipeline.run(make_upload("x.png", original + payload))

    assert result.ok
    stored = result.outcome.asset.absolute_path.read_bytes()
    assert len(stored) != len(original + payload)
    assert payload not in stored
    with Image.open(io.BytesIO(stored)) as a, Image.open(io.BytesIO(original)) as b:
        assert a.convert("RGBA").tobytes() == b.convert("RGBA").tobytes()


def test_same_zip_twice_gets_distinct_ids(pipeline, make_upload, zip_bytes, storage_root):
    first = pipeline.run(make_upload("same.zip", zip_bytes))
    second = pipeline.run(make_upload("same.zip", zip_bytes))

    assert first.ok and second.ok
    assert first.outcome.asset.base_id != second.outcome.asset.base_id
    for result in (first, second):
        assert result.outcome.asset.absolute_path.read_bytes() == zip_bytes
        assert URL_RE.match(result.outcome.asset.public_url)
    assert len(stored_files(storage_root)) == 2


def test_zip_is_stored_byte_for_byte(pipeline, make_upload):
    data = make_zip({"a.txt": b"a" * 100, "b/c.txt": b"c"})
    result = pipeline.run(make_upload("bundle.ZIP", data))
    assert result.ok
    assert result.outcome.asset.extension == "zip"
    assert result.outcome.sanitized is False
    assert result.outcome.asset.absolute_path.read_bytes() == data


def test_png_stored_unsanitized_when_sanitizing_unavailable(make_pipeline, make_upload):
    data = make_png() + b"trailing"
    result = make_pipeline(capabilities=NO_SANITIZING).run(make_upload("x.png", data))

    assert result.ok
    assert result.outcome.sanitized is False
    assert result.outcome.asset.absolute_path.read_bytes() == data


def test_png_refused_when_sanitizing_required_but_unavailable(make_pipeline, make_upload, png_bytes, storage_root):
    caps = Capabilities(content_sniffing=True, image_sanitizing=False, require_image_sanitizing=True)
    result = make_pipeline(capabilities=caps).run(make_upload("x.png", png_bytes))

    assert isinstance(result.outcome, ServerError)
    assert result.outcome.reason == ServerErrorReason.SANITIZE_UNAVAILABLE
    assert stored_files(storage_root) == []


def test_zip_unaffected_by_required_sanitizing(make_pipeline, make_upload, zip_bytes):
    caps = Capabilities(content_sniffing=True, image_sanitizing=False, require_image_sanitizing=True)
    assert make_pipeline(capabilities=caps).run(make_upload("x.zip", zip_bytes)).ok


def test_corrupt_png_is_sanitize_failed_and_leaves_nothing(pipeline, make_upload, storage_root):
    data = b"\x89PNG\r\n\x1a\n" + b"\xde\xad\xbe\xef" * 16
    result = pipeline.run(make_upload("x.png", data))

    assert isinstance(result.outcome, ServerError)
    assert result.outcome.reason == ServerErrorReason.SANITIZE_FAILED
    assert result.trail[-2:] == (PipelineState.NAME_ALLOCATED, PipelineState.SERVER_ERROR)
    assert stored_files(storage_root) == []


def test_storage_write_failure_leaves_no_file(pipeline, make_upload, zip_bytes, png_bytes, storage_root, monkeypatch):
    def no_space(src, dst):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr("uploader.services.storage.local.os.link", no_space)
    for name, data in (("a.zip", zip_bytes), ("b.png", png_bytes)):
        result = pipeline.run(make_upload(name, data))
        assert isinstance(result.outcome, ServerError)
        assert result.outcome.reason == ServerErrorReason.STORAGE_WRITE_FAILED
        assert result.state == PipelineState.SERVER_ERROR
        assert PipelineState.STORED not in result.trail
    assert stored_files(storage_root) == []


def test_unwritable_storage_root_is_directory_unwritable(pipeline, make_upload, zip_bytes, storage_root):
    storage_root.write_bytes(b"a file where the directory should be")
    result = pipeline.run(make_upload("a.zip", zip_bytes))

    assert isinstance(result.outcome, ServerError)
    assert result.outcome.reason == ServerErrorReason.DIRECTORY_UNWRITABLE
    assert result.trail[-2:] == (PipelineState.FORMAT_VALIDATED, PipelineState.SERVER_ERROR)


def test_exhausted_name_allocation(pipeline, make_upload, zip_bytes, storage_root, monkeypatch):
    monkeypatch.setattr(
        "uploader.services.pipeline.allocate_unique_base",
        lambda root, max_attempts: AllocationExhausted(max_attempts),
    )
    result = pipeline.run(make_upload("a.zip", zip_bytes))

    assert isinstance(result.outcome, ServerError)
    assert result.outcome.reason == ServerErrorReason.EXHAUSTED_ATTEMPTS
    assert "10 attempts" in result.outcome.detail
    assert stored_files(storage_root) == []


def test_degraded_sniffing_still_sanitizes(make_pipeline, make_upload, png_bytes):
    result = make_pipeline(capabilities=NO_SNIFFING).run(make_upload("x.png", png_bytes + b"junk"))
    assert isinstance(result.outcome, Completed)
    assert result.outcome.sanitized is True
    assert not result.outcome.asset.absolute_path.read_bytes().endswith(b"junk")


def test_sniff_failure_is_server_error(make_pipeline, make_upload, png_bytes, storage_root):
    def broken(path):
        raise SniffError("libmagic failed")

    result = make_pipeline(sniffer=broken).run(make_upload("x.png", png_bytes))

    assert isinstance(result.outcome, ServerError)
    assert result.outcome.reason == ServerErrorReason.SNIFF_FAILED
    assert result.trail == (PipelineState.RECEIVED, PipelineState.SIZE_CHECKED, PipelineState.SERVER_ERROR)
    assert stored_files(storage_root) == []


def test_oversized_image_dimensions_are_sanitize_failed(settings, make_upload, storage_root):
    small_cap = settings.model_copy(update={"max_image_pixels": 50, "enable_content_sniffing": False})
    pipeline = build_pipeline(small_cap, Capabilities(content_sniffing=False, image_sanitizing=True))
    result = pipeline.run(make_upload("x.png", make_png(size=(8, 8))))

    assert isinstance(result.outcome, ServerError)
    assert result.outcome.reason == ServerErrorReason.SANITIZE_FAILED
    assert stored_files(storage_root) == []


_WITHOUT_PILLOW = textwrap.dedent(
    """
    import sys
    sys.modules["PIL"] = None

    from pathlib import Path

    import uploader.main
    from uploader.core.capabilities import detect_capabilities
    from uploader.core.config import Settings
    from uploader.services.pipeline import UploadRequest, build_pipeline

    root, source = Path(sys.argv[1]), Path(sys.argv[2])
    settings = Settings(_env_file=None, storage_root=str(root), enable_content_sniffing=False)
    capabilities = detect_capabilities(settings)
    result = build_pipeline(settings, capabilities).run(
        UploadRequest("photo.png", source.stat().st_size, source)
    )
    print(capabilities.image_sanitizing, result.state.value, result.outcome.sanitized, result.outcome.asset.filename)
    """
)


def test_png_stored_unsanitized_when_pillow_missing(tmp_path, png_bytes):
    backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    source = tmp_path / "upload.tmp"
    source.write_bytes(png_bytes + b"trailing")
    root = tmp_path / "i"
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, [backend_dir, os.environ.get("PYTHONPATH")]))}

    proc = subprocess.run(
        [sys.executable, "-c", _WITHOUT_PILLOW, str(root), str(source)],
        capture_output=True,
        text=True,
        cwd=tmp_path,
        env=env,
        timeout=60,
    )

    assert proc.returncode == 0, proc.stderr
    image_sanitizing, state, sanitized, filename = proc.stdout.split()
    assert (image_sanitizing, state, sanitized) == ("False", "completed", "False")
    assert (root / filename).read_bytes() == png_bytes + b"trailing"
