"""Pytest fixtures: settings, storage root, PNG/ZIP payloads, pipeline factory, test client."""
import io
import zipfile
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image

from uploader.core.capabilities import Capabilities
from uploader.core.config import Settings, get_settings
from uploader.core.deps import get_pipeline
from uploader.main import app
from uploader.services.format_validation import FormatValidator
from uploader.services.pipeline import UploadPipeline, UploadRequest
from uploader.services.storage.local import LocalStorage

DOMAIN = "i.example.com"
FULL = Capabilities(content_sniffing=True, image_sanitizing=True)
NO_SNIFFING = Capabilities(content_sniffing=False, image_sanitizing=True)
NO_SANITIZING = Capabilities(content_sniffing=True, image_sanitizing=False)


def sniff_signature(path: Path) -> str:
    """Deterministic stand-in for libmagic: classify by leading magic bytes only."""
    head = Path(path).read_bytes()[:8]
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if head.startswith((b"PK\x03\x04", b"PK\x05\x06")):
        return "application/zip"
    if head.startswith(b"MZ"):
        return "application/x-dosexec"
    if not head:
        return "application/x-empty"
    return "text/plain"


def make_png(size=(8, 8), mode="RGB", **save_kwargs) -> bytes:
    img = Image.new(mode, size)
    if mode == "RGB":
        img.putdata([((x * 31) % 256, (y * 47) % 256, (x * y) % 256) for y in range(size[1]) for x in range(size[0])])
    buf = io.BytesIO()
    img.save(buf, format="PNG", **save_kwargs)
    return buf.getvalue()


def make_zip(files: dict[str, bytes] | None = None) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, data in (files or {"hello.txt": b"hello world\n"}).items():
            zf.writestr(name, data)
    return buf.getvalue()


def stored_files(root: Path) -> list[str]:
    """Every entry in the storage root, dot-files included."""
    if not root.exists():
        return []
    return sorted(p.name for p in root.iterdir())


@pytest.fixture
def storage_root(tmp_path: Path) -> Path:
    return tmp_path / "i"


@pytest.fixture
def incoming_dir(tmp_path: Path) -> Path:
    d = tmp_path / "incoming"
    d.mkdir()
    return d


@pytest.fixture
def settings(storage_root: Path, incoming_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        domain_prefix=DOMAIN,
        storage_root=str(storage_root),
        incoming_dir=str(incoming_dir),
        max_upload_size="1M",
    )


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def zip_bytes() -> bytes:
    return make_zip()


@pytest.fixture
def make_pipeline(settings: Settings):
    """Build a pipeline over the test storage root with chosen capabilities (libmagic simulated)."""

    def _make(capabilities: Capabilities = FULL, max_upload_bytes: int | None = None, sniffer=sniff_signature):
        return UploadPipeline(
            storage=LocalStorage(settings.storage_root),
            validator=FormatValidator(settings.allowed_extension_set, capabilities, sniffer=sniffer),
            capabilities=capabilities,
            max_upload_bytes=max_upload_bytes if max_upload_bytes is not None else settings.max_upload_bytes,
            max_upload_label=settings.max_upload_size,
            domain_prefix=settings.domain_prefix,
            url_scheme=settings.url_scheme,
        )

    return _make


@pytest.fixture
def pipeline(make_pipeline) -> UploadPipeline:
    return make_pipeline()


@pytest.fixture
def make_upload(incoming_dir: Path):
    """Write bytes to a temp file and wrap them as a received UploadRequest."""
    counter = iter(range(10**6))

    def _make(filename: str, data: bytes, size_bytes: int | None = None) -> UploadRequest:
        temp_path = incoming_dir / f"upload-{next(counter)}.tmp"
        temp_path.write_bytes(data)
        return UploadRequest(
            declared_filename=filename,
            size_bytes=len(data) if size_bytes is None else size_bytes,
            temp_path=temp_path,
        )

    return _make


@pytest.fixture
async def client(settings: Settings, pipeline: UploadPipeline):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
