"""
Charm Pipeline Orchestrator

Sequences the four stages, records transition timestamps and per-stage
timings, and is the single error boundary of a run:

    VALIDATED -> PREPROCESSED -> DESCRIBED -> SYNTHESIZED -> DERIVED -> COMPLETED

Only a synthesis failure moves the run to FAILED. Every other stage absorbs
its own failures.
"""

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import httpx

from charmsmith.core.config import Settings
from charmsmith.core.exceptions import PipelineStageError, ValidationError
from charmsmith.core.logging import LogContext, get_logger
from charmsmith.core.metrics import record_job_completion, track_stage_latency
from charmsmith.core.storage import IStorage, build_metadata, put_or_placeholder
from charmsmith.pipeline.derive import DerivedRenderer
from charmsmith.pipeline.imaging import probe_dimensions
from charmsmith.pipeline.preprocess import Preprocessor
from charmsmith.pipeline.schemas import (
    AssetRole,
    CharmRequest,
    PipelineResult,
    PipelineState,
    RenderedAsset,
)
from charmsmith.pipeline.synthesis import ImageSynthesizer
from charmsmith.pipeline.vision import VisionDescriber

logger = get_logger(__name__)

ORIGINAL_ROLE_TAG = "original-image"


def validate_request(request: CharmRequest, max_image_size_bytes: Optional[int] = None):
    """Reject requests missing required fields before the pipeline starts."""
    if not request.image or not request.email or not request.email.strip():
        raise ValidationError("Missing required fields: image and email are required")
    if max_image_size_bytes and len(request.image) > max_image_size_bytes:
        raise ValidationError(
            f"Image size ({len(request.image) / (1024 * 1024):.2f}MB) exceeds maximum allowed "
            f"size ({max_image_size_bytes / (1024 * 1024):.0f}MB)"
        )


class _RunClock:
    """Transition timestamps and per-stage elapsed milliseconds of one run."""

    def __init__(self):
        self.transitions: Dict[PipelineState, datetime] = {}
        self.timings_ms: Dict[str, int] = {}
        self.state: Optional[PipelineState] = None
        self._stage_start = time.monotonic()

    def lap(self, stage: str):
        now = time.monotonic()
        self.timings_ms[stage] = int((now - self._stage_start) * 1000)
        self._stage_start = now

    def enter(self, state: PipelineState, stage: Optional[str] = None):
        if stage:
            self.lap(stage)
        self.state = state
        self.transitions[state] = datetime.now(timezone.utc)
        logger.info("pipeline_transition", state=state.value)


class CharmPipeline:
    """Runs one request through preprocess, vision, synthesis and derive."""

    def __init__(
        self,
        config: Settings,
        storage: IStorage,
        preprocessor: Preprocessor,
        describer: VisionDescriber,
        synthesizer: ImageSynthesizer,
        renderer: DerivedRenderer,
    ):
        self.config = config
        self.storage = storage
        self.preprocessor = preprocessor
        self.describer = describer
        self.synthesizer = synthesizer
        self.renderer = renderer

    @classmethod
    def build(cls, config: Settings, client: httpx.AsyncClient, storage: IStorage) -> "CharmPipeline":
        """Wire every stage from one settings value and one HTTP client."""
        return cls(
            config=config,
            storage=storage,
            preprocessor=Preprocessor(config, client),
            describer=VisionDescriber(config, client),
            synthesizer=ImageSynthesizer(config, client),
            renderer=DerivedRenderer(config, client, storage),
        )

    async def store_original(self, request: CharmRequest, product_id: str) -> str:
        ext = "png" if request.is_png else "jpg"
        filename = f"{uuid.uuid4()}.{ext}"
        content_type = request.content_type or ("image/png" if request.is_png else "image/jpeg")
        return await put_or_placeholder(
            self.storage,
            request.image,
            filename,
            build_metadata(product_id, ORIGINAL_ROLE_TAG),
            content_type=content_type,
        )

    async def _probe(self, data: bytes) -> Optional[Tuple[int, int]]:
        try:
            return await asyncio.to_thread(probe_dimensions, data)
        except Exception as e:
            logger.warning("image_probe_failed", error=str(e))
            return None

    async def run(self, request: CharmRequest, request_id: Optional[str] = None) -> PipelineResult:
        """
        Execute the pipeline for one validated request.

        Raises:
            ValidationError: required fields missing (before any stage runs)
            PipelineStageError: synthesis failed after its retry budget
        """
        validate_request(request, self.config.MAX_IMAGE_SIZE_BYTES)
        request_id = request_id or str(uuid.uuid4())
        started = time.monotonic()

        with LogContext(request_id=request_id):
            clock = _RunClock()
            clock.enter(PipelineState.VALIDATED)
            logger.info(
                "pipeline_started",
                image_bytes=len(request.image),
                content_type=request.content_type,
                has_story_override=bool(request.story)
            )

            product_id = str(int(time.time() * 1000))
            with track_stage_latency("upload"):
                original_url, dimensions = await asyncio.gather(
                    self.store_original(request, product_id),
                    self._probe(request.image),
                )
            clock.lap("upload")

            with track_stage_latency("preprocess"):
                working = await self.preprocessor.run(
                    request.image, request.content_type, original_url
                )
            clock.enter(PipelineState.PREPROCESSED, "preprocess")

            with track_stage_latency("vision"):
                description = await self.describer.describe(working, request.story)
            clock.enter(PipelineState.DESCRIBED, "vision")

            try:
                with track_stage_latency("synthesis"):
                    gold_url = await self.synthesizer.synthesize(working, description.instruction)
            except Exception as e:
                clock.enter(PipelineState.FAILED, "synthesis")
                record_job_completion(
                    "failed",
                    failure_stage="synthesis",
                    duration_seconds=time.monotonic() - started
                )
                logger.error("pipeline_failed", stage="synthesis", error=str(e))
                raise PipelineStageError(str(e), stage="synthesis", request_id=request_id) from e
            clock.enter(PipelineState.SYNTHESIZED, "synthesis")

            with track_stage_latency("derive"):
                silver_url = await self.renderer.render(gold_url)
            clock.enter(PipelineState.DERIVED, "derive")

            clock.enter(PipelineState.COMPLETED)
            total_seconds = time.monotonic() - started
            record_job_completion("completed", duration_seconds=total_seconds)
            logger.info(
                "pipeline_completed",
                total_time_ms=int(total_seconds * 1000),
                timings_ms=clock.timings_ms
            )

            return PipelineResult(
                request_id=request_id,
                description=description,
                assets=[
                    RenderedAsset(url=gold_url, role=AssetRole.GOLD),
                    RenderedAsset(url=silver_url, role=AssetRole.SILVER),
                    RenderedAsset(url=original_url, role=AssetRole.ORIGINAL),
                ],
                timings_ms=clock.timings_ms,
                transitions=clock.transitions,
                working_image_source=working.source,
                transform_url=working.transform_url,
                original_dimensions=dimensions,
            )
