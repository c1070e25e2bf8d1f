import json

import pytest

from charmsmith.core.exceptions import StorageError
from charmsmith.core.storage import (
    LocalStorage,
    StorageFactory,
    UnavailableStorage,
    build_metadata,
    put_or_placeholder,
)


@pytest.fixture(autouse=True)
def reset_factory():
    StorageFactory.reset()
    yield
    StorageFactory.reset()


@pytest.mark.asyncio
async def test_local_storage_writes_file_and_metadata(tmp_path):
    storage = LocalStorage(str(tmp_path), public_base_url="https://cdn.example.com/static/")

    url = await storage.put(b"abc", "x-silver.jpg", build_metadata("123", "silver-image"))

    assert url == "https://cdn.example.com/static/x-silver.jpg"
    assert (tmp_path / "x-silver.jpg").read_bytes() == b"abc"
    meta = json.loads((tmp_path / "x-silver.jpg.meta.json").read_text())
    assert meta["product_id"] == "123"
    assert meta["type"] == "silver-image"
    assert meta["content_type"] == "image/jpeg"


@pytest.mark.asyncio
async def test_local_storage_keeps_writes_inside_base_path(tmp_path):
    storage = LocalStorage(str(tmp_path / "store"))

    url = await storage.put(b"abc", "../../escape.jpg", {"type": "original-image"})

    assert url.endswith("/escape.jpg")
    assert (tmp_path / "store" / "escape.jpg").exists()
    assert not (tmp_path / "escape.jpg").exists()


@pytest.mark.asyncio
async def test_unavailable_storage_raises():
    with pytest.raises(StorageError):
        await UnavailableStorage().put(b"abc", "a.jpg", {})


@pytest.mark.asyncio
async def test_placeholder_substituted_on_failure():
    storage = UnavailableStorage("https://placeholder.example.com/uploads/")
    url = await put_or_placeholder(storage, b"abc", "a.png", {})
    assert url == "https://placeholder.example.com/uploads/a.png"


def test_factory_respects_storage_flag(settings):
    assert isinstance(StorageFactory.get_storage(settings), LocalStorage)

    StorageFactory.reset()
    settings.STORAGE_ENABLED = False
    assert isinstance(StorageFactory.get_storage(settings), UnavailableStorage)


def test_metadata_fields():
    meta = build_metadata("42", "gold-image")
    assert meta["product_id"] == "42"
    assert meta["type"] == "gold-image"
    assert meta["uploaded_at"]
