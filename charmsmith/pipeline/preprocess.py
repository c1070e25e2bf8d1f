"""
Stage 1: Preprocessing

Normalizes the upload into a square, white-padded, desaturated JPEG.
The transformation endpoint is tried first against the stored original;
local numpy processing takes over when that fetch fails, and the raw bytes
pass through untouched if even that throws.
"""

import asyncio
from typing import Optional

import httpx

from charmsmith.core.config import Settings
from charmsmith.core.exceptions import ExternalAPIError
from charmsmith.core.logging import get_logger, with_logging
from charmsmith.core.metrics import record_external_call
from charmsmith.pipeline.fallback import first_success
from charmsmith.pipeline.imaging import letterbox_greyscale
from charmsmith.pipeline.schemas import WorkingImage, WorkingImageSource
from charmsmith.pipeline.transform import build_transform_url

logger = get_logger(__name__)


class Preprocessor:
    """Remote-transform-first, local-fallback image normalizer."""

    def __init__(self, config: Settings, client: httpx.AsyncClient):
        self.config = config
        self.client = client
        self.target = config.WORKING_IMAGE_SIZE

    def transform_url_for(self, source_url: str) -> str:
        return build_transform_url(
            self.config.TRANSFORM_BASE_URL,
            source_url,
            saturation=0,
            width=self.target,
            height=self.target,
            fit="pad",
            background="white",
            format="jpeg",
        )

    async def fetch_remote(self, transform_url: str) -> WorkingImage:
        response = await self.client.get(transform_url)
        if not response.is_success:
            record_external_call("transform", "error", response.status_code)
            raise ExternalAPIError(
                f"Transform failed ({response.status_code}): {response.text}",
                service="transform",
                http_status=response.status_code,
                body=response.text,
            )
        record_external_call("transform", "success", response.status_code)
        return WorkingImage(
            data=response.content,
            content_type="image/jpeg",
            size=self.target,
            source=WorkingImageSource.REMOTE_TRANSFORM,
            transform_url=transform_url,
        )

    async def process_locally(
        self,
        raw: bytes,
        content_type: str,
        transform_url: Optional[str] = None
    ) -> WorkingImage:
        data = await asyncio.to_thread(
            letterbox_greyscale,
            raw,
            content_type,
            self.target,
            self.config.JPEG_QUALITY,
        )
        return WorkingImage(
            data=data,
            content_type="image/jpeg",
            size=self.target,
            source=WorkingImageSource.LOCAL_FALLBACK,
            transform_url=transform_url,
        )

    @with_logging("preprocess")
    async def run(
        self,
        raw: bytes,
        content_type: str,
        source_url: Optional[str] = None
    ) -> WorkingImage:
        """
        Produce the working image.

        Args:
            raw: Uploaded image bytes
            content_type: Declared MIME type of ``raw``
            source_url: Public URL of the stored original, if any

        Returns:
            WorkingImage; never raises for bad input
        """
        content_type = content_type or "image/jpeg"
        transform_url = self.transform_url_for(source_url) if source_url else None

        producers = []
        if transform_url:
            producers.append(("remote_transform", lambda: self.fetch_remote(transform_url)))
        producers.append(
            ("local_fallback", lambda: self.process_locally(raw, content_type, transform_url))
        )

        def passthrough() -> WorkingImage:
            return WorkingImage(
                data=raw,
                content_type=content_type,
                source=WorkingImageSource.PASSTHROUGH,
                transform_url=transform_url,
            )

        _, image = await first_success("preprocess", producers, passthrough)
        logger.info(
            "working_image_ready",
            source=image.source.value,
            size=image.size,
            bytes=len(image.data)
        )
        return image
