"""
Stage 4: Silver Derivation

The silver rendering is a desaturated copy of the gold one. Three ways of
getting the bytes are tried in order; whatever comes back is stored under a
fresh name. If nothing can be fetched or stored, the gold URL is returned
so the run always has a silver asset.
"""

import time
import uuid

import httpx

from charmsmith.core.config import Settings
from charmsmith.core.exceptions import ExternalAPIError
from charmsmith.core.logging import get_logger, with_logging
from charmsmith.core.metrics import record_external_call
from charmsmith.core.storage import IStorage, build_metadata
from charmsmith.pipeline.fallback import first_success
from charmsmith.pipeline.transform import build_transform_url

logger = get_logger(__name__)

SILVER_ROLE_TAG = "silver-image"


class DerivedRenderer:
    """Turns a gold rendering URL into a silver rendering URL. Never raises."""

    def __init__(self, config: Settings, client: httpx.AsyncClient, storage: IStorage):
        self.config = config
        self.client = client
        self.storage = storage

    async def _fetch(self, step: str, url: str, **kwargs) -> bytes:
        response = await self.client.get(url, **kwargs)
        if not response.is_success:
            record_external_call("transform", "error", response.status_code)
            raise ExternalAPIError(
                f"{step} failed: {response.status_code}",
                service="transform",
                http_status=response.status_code,
                body=response.text,
            )
        record_external_call("transform", "success", response.status_code)
        return response.content

    async def via_transform_url(self, gold_url: str) -> bytes:
        url = build_transform_url(
            self.config.TRANSFORM_BASE_URL, gold_url, saturation=0, format="jpeg"
        )
        return await self._fetch("transform_url", url)

    async def via_fetch_options(self, gold_url: str) -> bytes:
        return await self._fetch(
            "fetch_options",
            gold_url,
            params={"saturation": 0, "format": "jpeg"},
        )

    async def via_raw_fetch(self, gold_url: str) -> bytes:
        return await self._fetch("raw_fetch", gold_url)

    @with_logging("derive")
    async def render(self, gold_url: str) -> str:
        """
        Produce the silver rendering.

        Returns:
            Public URL of the stored silver image, or ``gold_url`` when the
            bytes could not be fetched or stored
        """
        step, data = await first_success(
            "derive",
            [
                ("transform_url", lambda: self.via_transform_url(gold_url)),
                ("fetch_options", lambda: self.via_fetch_options(gold_url)),
                ("raw_fetch", lambda: self.via_raw_fetch(gold_url)),
            ],
            None,
        )
        if data is None:
            logger.warning("silver_fallback_to_gold", reason="fetch_failed", url=gold_url)
            return gold_url

        filename = f"{uuid.uuid4()}-silver.jpg"
        product_id = str(int(time.time() * 1000))
        try:
            silver_url = await self.storage.put(
                data,
                filename,
                build_metadata(product_id, SILVER_ROLE_TAG),
                content_type="image/jpeg",
            )
        except Exception as e:
            logger.warning(
                "silver_fallback_to_gold",
                reason="storage_failed",
                error=str(e),
                url=gold_url
            )
            return gold_url

        if not silver_url:
            return gold_url

        logger.info("silver_rendering_ready", url=silver_url, source_step=step, bytes=len(data))
        return silver_url
