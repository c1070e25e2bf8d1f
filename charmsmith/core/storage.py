"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for storing rendered assets and returning their
public URLs. LocalStorage serves files from disk through the app's static
mount; UnavailableStorage stands in when no backing store is configured.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from charmsmith.core.config import Settings
from charmsmith.core.exceptions import StorageError
from charmsmith.core.logging import get_logger
from charmsmith.core.metrics import record_external_call

logger = get_logger(__name__)


def build_metadata(product_id: str, role_tag: str) -> Dict[str, str]:
    """Metadata map attached to every stored asset."""
    return {
        "product_id": product_id,
        "uploaded_at": datetime.now(timezone.utc).isoformat(),
        "type": role_tag,
    }


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    placeholder_base_url: str = "https://storage.example.com/uploads"

    @abstractmethod
    async def put(
        self,
        file_data: bytes,
        filename: str,
        metadata: Dict[str, str],
        content_type: str = "image/jpeg"
    ) -> str:
        """
        Store a file and return its public URL.

        Args:
            file_data: Raw bytes of the file
            filename: Target object name (already unique)
            metadata: Small string map (product id, timestamp, role tag)
            content_type: MIME type of the file

        Returns:
            Publicly resolvable URL of the stored object

        Raises:
            StorageError: if the backing store is unavailable or the write fails
        """
        pass

    def placeholder_url(self, filename: str) -> str:
        """Deterministic URL substituted when a write cannot be performed."""
        return f"{self.placeholder_base_url.rstrip('/')}/{filename}"


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(
        self,
        base_path: str = "./data/storage",
        public_base_url: str = "http://localhost:8000/static/storage",
        placeholder_base_url: Optional[str] = None,
    ):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        if placeholder_base_url:
            self.placeholder_base_url = placeholder_base_url

    async def put(
        self,
        file_data: bytes,
        filename: str,
        metadata: Dict[str, str],
        content_type: str = "image/jpeg"
    ) -> str:
        # Object names are flat; never let a filename escape the base path
        name = Path(filename).name
        file_path = self.base_path / name

        try:
            with open(file_path, "wb") as f:
                f.write(file_data)
            with open(file_path.with_name(name + ".meta.json"), "w", encoding="utf-8") as f:
                json.dump({"content_type": content_type, **metadata}, f)
        except OSError as e:
            record_external_call("storage", "error")
            raise StorageError(f"Failed to write {name}: {e}")

        record_external_call("storage", "success")
        logger.info("asset_stored", filename=name, size=len(file_data), role=metadata.get("type"))
        return f"{self.public_base_url}/{name}"


class UnavailableStorage(IStorage):
    """Storage binding that is not configured; every write fails."""

    def __init__(self, placeholder_base_url: Optional[str] = None):
        if placeholder_base_url:
            self.placeholder_base_url = placeholder_base_url

    async def put(
        self,
        file_data: bytes,
        filename: str,
        metadata: Dict[str, str],
        content_type: str = "image/jpeg"
    ) -> str:
        record_external_call("storage", "unavailable")
        raise StorageError(f"Storage is not available; cannot store {filename}")


async def put_or_placeholder(
    storage: IStorage,
    file_data: bytes,
    filename: str,
    metadata: Dict[str, str],
    content_type: str = "image/jpeg"
) -> str:
    """Store a file, substituting the placeholder URL when storage fails."""
    try:
        return await storage.put(file_data, filename, metadata, content_type)
    except StorageError as e:
        url = storage.placeholder_url(filename)
        logger.warning("storage_placeholder_used", filename=filename, error=str(e), url=url)
        return url


class StorageFactory:
    """
    Factory for creating storage instances.

    STORAGE_ENABLED=false models a deployment where the bucket binding is
    missing: every write fails and callers fall back to their own defaults.
    """

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls, config: Settings) -> IStorage:
        """Get the appropriate storage implementation based on settings."""
        if cls._instance is None:
            if config.STORAGE_ENABLED:
                cls._instance = LocalStorage(
                    base_path=config.LOCAL_STORAGE_PATH,
                    public_base_url=config.STORAGE_PUBLIC_BASE_URL,
                    placeholder_base_url=config.STORAGE_PLACEHOLDER_BASE_URL,
                )
            else:
                logger.warning("storage_disabled", message="Using UnavailableStorage")
                cls._instance = UnavailableStorage(config.STORAGE_PLACEHOLDER_BASE_URL)

        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None
