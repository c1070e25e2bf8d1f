"""
Charm Endpoint

POST /api/v1/charms - Turn an uploaded photo into gold and silver charm renderings:
1. Store the original and build the working image
2. Describe it with the vision model
3. Synthesize the gold rendering
4. Derive the silver rendering
"""

import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel

from charmsmith.api.dependencies import get_pipeline
from charmsmith.core.exceptions import ValidationError
from charmsmith.core.logging import get_logger
from charmsmith.pipeline.orchestrator import CharmPipeline
from charmsmith.pipeline.schemas import CharmRequest

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Response Schemas
# =============================================================================

class CharmData(BaseModel):
    originalImageUrl: Optional[str]
    goldImageUrl: str
    silverImageUrl: str
    productName: str
    story: str
    inspiration: str
    email: str
    publicGallery: bool
    timestamp: str


class CharmResponse(BaseModel):
    success: bool = True
    data: CharmData
    performance: Dict[str, Any]


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=CharmResponse)
async def create_charm(
    image: Optional[UploadFile] = File(None),
    email: Optional[str] = Form(None),
    publicGallery: Optional[str] = Form(None),
    story: Optional[str] = Form(None),
    inspiration: Optional[str] = Form(None),
    pipeline: CharmPipeline = Depends(get_pipeline),
):
    """
    Create a gold and a silver charm rendering from an uploaded photo.

    Only a synthesis failure (after one retry) fails the request; vision,
    transformation and storage problems degrade the output instead.
    """
    start_time = time.monotonic()
    request_id = str(uuid.uuid4())

    if image is None or not email:
        raise ValidationError("Missing required fields: image and email are required")

    image_bytes = await image.read()
    charm_request = CharmRequest(
        image=image_bytes,
        content_type=image.content_type or "image/jpeg",
        filename=image.filename,
        email=email,
        public_gallery=publicGallery == "true",
        story=story or None,
        inspiration=inspiration or None,
    )

    result = await pipeline.run(charm_request, request_id=request_id)

    total_ms = int((time.monotonic() - start_time) * 1000)
    logger.info("charm_request_completed", request_id=request_id, total_time_ms=total_ms)

    return CharmResponse(
        data=CharmData(
            originalImageUrl=result.original_url,
            goldImageUrl=result.gold_url,
            silverImageUrl=result.silver_url,
            productName=result.description.label,
            story=result.description.summary,
            inspiration=charm_request.inspiration or "",
            email=charm_request.email,
            publicGallery=charm_request.public_gallery,
            timestamp=datetime.now(timezone.utc).isoformat(),
        ),
        performance={
            "totalTimeMs": total_ms,
            "breakdown": result.timings_ms,
            "workingImageSource": result.working_image_source.value,
        },
    )
