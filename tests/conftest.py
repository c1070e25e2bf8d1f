import io
from typing import Callable, Dict, List, Tuple

import httpx
import pytest
from PIL import Image

from charmsmith.core.config import Settings
from charmsmith.core.exceptions import StorageError
from charmsmith.core.storage import IStorage

TRANSFORM_HOST = "transform.test"
VISION_HOST = "vision.test"
SYNTHESIS_HOST = "synthesis.test"
ASSET_HOST = "assets.test"

GOLD_URL = f"https://{ASSET_HOST}/gold/charm.jpg"


class RecordingStorage(IStorage):
    """In-memory storage that records every put."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.puts: List[Tuple[bytes, str, Dict[str, str], str]] = []

    async def put(self, file_data, filename, metadata, content_type="image/jpeg"):
        if self.fail:
            raise StorageError("bucket binding missing")
        self.puts.append((file_data, filename, metadata, content_type))
        return f"https://{ASSET_HOST}/stored/{filename}"


def make_image_bytes(width: int, height: int, fmt: str = "PNG", color=(200, 30, 60, 255)) -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = color if mode == "RGBA" else color[:3]
    buffer = io.BytesIO()
    Image.new(mode, (width, height), fill).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        OPENAI_API_KEY="sk-test",
        OPENAI_API_URL=f"https://{VISION_HOST}/v1/chat/completions",
        FAL_API_KEY="fal-test",
        FAL_API_URL=f"https://{SYNTHESIS_HOST}/fal-ai/qwen-image-edit-lora",
        TRANSFORM_BASE_URL=f"https://{TRANSFORM_HOST}/cdn-cgi/image",
        WORKING_IMAGE_SIZE=64,
        SYNTHESIS_RETRY_BASE_DELAY_SECONDS=0.01,
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        STORAGE_PUBLIC_BASE_URL=f"https://{ASSET_HOST}/static/storage",
        LOG_FORMAT_JSON=False,
    )


@pytest.fixture
def storage() -> RecordingStorage:
    return RecordingStorage()


@pytest.fixture
def failing_storage() -> RecordingStorage:
    return RecordingStorage(fail=True)


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes(80, 40, "PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes(30, 90, "JPEG")


@pytest.fixture
def mock_client() -> Callable[[Callable], httpx.AsyncClient]:
    """Build an AsyncClient whose requests are answered by ``handler``."""

    def factory(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


def vision_response(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def synthesis_response(url: str = GOLD_URL) -> httpx.Response:
    return httpx.Response(200, json={"images": [{"url": url}]})
