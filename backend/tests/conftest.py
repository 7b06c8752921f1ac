"""
Shared fixtures for converter tests.

- image factories producing real encoded bytes via Pillow
- a FastAPI TestClient for the conversion endpoint
- an httpx client wired to the app in-process, so the batch controller
  can be exercised end to end without a running server
"""

import sys
from io import BytesIO
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from PIL import Image

# Make the backend package importable when pytest runs from the repo root
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from converter.batch import BatchController
from converter.conversion.codec import DecodedImage
from converter.conversion.service import get_conversion_service
from converter.errors import DecodeError
from converter.main import app

CONVERT_URL = "http://testserver/convert"


# ============================================
# Image helpers
# ============================================

def make_image(fmt: str = "PNG", size=(64, 48), color=(200, 30, 30), mode: str = "RGB") -> bytes:
    """Encode a solid-color image in the given Pillow format."""
    if mode in ("RGBA", "LA") and len(color) == 3:
        color = (*color, 128) if mode == "RGBA" else (color[0], 128)
    img = Image.new(mode, size, color if mode != "P" else 1)
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def open_image(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


class FakeCodec:
    """Codec stand-in: bytes starting with b"BAD" fail to decode, everything else succeeds."""

    def __init__(self, fail_with: Exception = None):
        self.fail_with = fail_with
        self.decoded = 0
        self.closed = 0

    def decode(self, data: bytes) -> DecodedImage:
        if data.startswith(b"BAD"):
            raise DecodeError("Unrecognized image format")
        self.decoded += 1
        return DecodedImage(format="FAKE", width=4, height=3, mode="RGB", handle=self)

    def transcode(self, decoded, target, options) -> bytes:
        if self.fail_with is not None:
            raise self.fail_with
        return b"out-" + target.value.encode()

    def close(self) -> None:
        self.closed += 1


# ============================================
# App fixtures
# ============================================

@pytest.fixture
def client():
    """TestClient over the real app (Pillow codec)."""
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def override_service():
    """
    Swap the conversion service for the duration of a test.

    Usage:
        override_service(ConversionService(codec=FakeCodec()))
    """
    def _override(service):
        app.dependency_overrides[get_conversion_service] = lambda: service
        return service

    yield _override
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def asgi_client():
    """httpx client that sends requests straight into the FastAPI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest_asyncio.fixture
async def controller(asgi_client):
    """BatchController talking to the in-process app."""
    ctrl = BatchController(CONVERT_URL, client=asgi_client)
    yield ctrl
    await ctrl.close()
