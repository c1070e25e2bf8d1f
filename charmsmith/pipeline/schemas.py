"""
Pipeline Schemas

Value types passed between the stages: the validated request, the working
image, the description triplet, rendered assets and the aggregated result.
"""

import base64
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from charmsmith.core.config import DEFAULT_SYNTHESIS_INSTRUCTION

DEFAULT_LABEL = "Custom Charm"
DEFAULT_SUMMARY = "A beautiful memory captured in a charm, ready to be treasured forever."


class WorkingImageSource(str, Enum):
    """Which preprocessing path produced the working image."""
    REMOTE_TRANSFORM = "remote_transform"
    LOCAL_FALLBACK = "local_fallback"
    PASSTHROUGH = "passthrough"


class AssetRole(str, Enum):
    GOLD = "gold"
    SILVER = "silver"
    ORIGINAL = "original"


class PipelineState(str, Enum):
    """Linear pipeline states; FAILED is reachable only from synthesis."""
    VALIDATED = "VALIDATED"
    PREPROCESSED = "PREPROCESSED"
    DESCRIBED = "DESCRIBED"
    SYNTHESIZED = "SYNTHESIZED"
    DERIVED = "DERIVED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class CharmRequest(BaseModel):
    """Input of one pipeline run, already parsed from the multipart body."""
    image: bytes
    content_type: str = "image/jpeg"
    filename: Optional[str] = None
    email: str
    public_gallery: bool = False
    story: Optional[str] = Field(None, description="Free-text override for the summary")
    inspiration: Optional[str] = None

    @property
    def is_png(self) -> bool:
        return "png" in (self.content_type or "").lower()


class WorkingImage(BaseModel):
    """Normalized image handed to the vision and synthesis stages."""
    data: bytes
    content_type: str = "image/jpeg"
    size: Optional[int] = None  # None when the source bytes passed through untouched
    source: WorkingImageSource
    transform_url: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.content_type};base64,{self.to_base64()}"


class Description(BaseModel):
    """Label / summary / instruction triplet; every field has a literal default."""
    label: str = DEFAULT_LABEL
    summary: str = DEFAULT_SUMMARY
    instruction: str = DEFAULT_SYNTHESIS_INSTRUCTION

    model_config = ConfigDict(frozen=True)


class RenderedAsset(BaseModel):
    url: str
    role: AssetRole

    model_config = ConfigDict(frozen=True)


class PipelineResult(BaseModel):
    """Aggregated output of a successful run."""
    request_id: str
    description: Description
    assets: List[RenderedAsset]
    timings_ms: Dict[str, int] = Field(default_factory=dict)
    transitions: Dict[PipelineState, datetime] = Field(default_factory=dict)
    working_image_source: WorkingImageSource
    transform_url: Optional[str] = None
    original_dimensions: Optional[Tuple[int, int]] = None

    def asset_url(self, role: AssetRole) -> Optional[str]:
        for asset in self.assets:
            if asset.role == role:
                return asset.url
        return None

    @property
    def gold_url(self) -> str:
        return self.asset_url(AssetRole.GOLD)

    @property
    def silver_url(self) -> str:
        return self.asset_url(AssetRole.SILVER)

    @property
    def original_url(self) -> Optional[str]:
        return self.asset_url(AssetRole.ORIGINAL)

    @property
    def total_time_ms(self) -> int:
        return sum(self.timings_ms.values())
