import json

import httpx
import pytest

from charmsmith.core.exceptions import PipelineStageError, ValidationError
from charmsmith.pipeline.orchestrator import CharmPipeline, validate_request
from charmsmith.pipeline.schemas import (
    AssetRole,
    CharmRequest,
    PipelineState,
    WorkingImageSource,
)

from conftest import (
    ASSET_HOST,
    GOLD_URL,
    SYNTHESIS_HOST,
    TRANSFORM_HOST,
    VISION_HOST,
    synthesis_response,
    vision_response,
)

VISION_JSON = {
    "productName": "Beach Day",
    "story": "Sun and sand, forever in gold.",
    "prompt": "Convert this image of a couple into a 3D figurine gold charm.",
}


def make_handler(synthesis_status: int = 200, calls=None):
    calls = calls if calls is not None else []

    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        calls.append(host)
        if host == TRANSFORM_HOST:
            return httpx.Response(200, content=b"transformed")
        if host == VISION_HOST:
            return vision_response(json.dumps(VISION_JSON))
        if host == SYNTHESIS_HOST:
            if synthesis_status != 200:
                return httpx.Response(synthesis_status, text="upstream exploded")
            return synthesis_response()
        return httpx.Response(200, content=b"gold")

    return handler


@pytest.fixture
def charm_request(png_bytes):
    return CharmRequest(
        image=png_bytes,
        content_type="image/png",
        filename="photo.png",
        email="someone@example.com",
        public_gallery=True,
    )


@pytest.mark.asyncio
async def test_happy_path(settings, mock_client, storage, charm_request):
    calls = []
    pipeline = CharmPipeline.build(settings, mock_client(make_handler(calls=calls)), storage)

    result = await pipeline.run(charm_request, request_id="req-1")

    assert result.request_id == "req-1"
    assert result.gold_url == GOLD_URL
    assert result.silver_url.startswith(f"https://{ASSET_HOST}/stored/")
    assert result.silver_url.endswith("-silver.jpg")
    assert result.original_url.endswith(".png")
    assert {asset.role for asset in result.assets} == {
        AssetRole.GOLD, AssetRole.SILVER, AssetRole.ORIGINAL
    }
    assert result.description.label == "Beach Day"
    assert result.description.summary == VISION_JSON["story"]
    assert result.working_image_source == WorkingImageSource.REMOTE_TRANSFORM
    assert result.original_dimensions == (80, 40)

    # stage order is strictly sequential
    assert calls == [TRANSFORM_HOST, VISION_HOST, SYNTHESIS_HOST, TRANSFORM_HOST]
    assert list(result.transitions) == [
        PipelineState.VALIDATED,
        PipelineState.PREPROCESSED,
        PipelineState.DESCRIBED,
        PipelineState.SYNTHESIZED,
        PipelineState.DERIVED,
        PipelineState.COMPLETED,
    ]
    assert set(result.timings_ms) == {"upload", "preprocess", "vision", "synthesis", "derive"}

    original_put, silver_put = storage.puts
    assert original_put[0] == charm_request.image
    assert original_put[2]["type"] == "original-image"
    assert original_put[3] == "image/png"
    assert silver_put[0] == b"transformed"


@pytest.mark.asyncio
async def test_story_override_keeps_vision_label(settings, mock_client, storage, charm_request):
    pipeline = CharmPipeline.build(settings, mock_client(make_handler()), storage)
    request = charm_request.model_copy(update={"story": "Grandma's garden."})

    result = await pipeline.run(request)

    assert result.description.summary == "Grandma's garden."
    assert result.description.label == "Beach Day"


@pytest.mark.asyncio
async def test_synthesis_failure_aborts_with_status_and_body(settings, mock_client, storage, charm_request):
    calls = []
    pipeline = CharmPipeline.build(
        settings, mock_client(make_handler(synthesis_status=500, calls=calls)), storage
    )

    with pytest.raises(PipelineStageError) as excinfo:
        await pipeline.run(charm_request)

    assert "500" in str(excinfo.value)
    assert "upstream exploded" in str(excinfo.value)
    assert excinfo.value.stage == "synthesis"
    assert calls.count(SYNTHESIS_HOST) == 2
    # derivation never started
    assert len(storage.puts) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("gold", ["", None])
async def test_empty_gold_url_fails_the_run(settings, mock_client, storage, charm_request, gold):
    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == VISION_HOST:
            return vision_response(json.dumps(VISION_JSON))
        if host == SYNTHESIS_HOST:
            return httpx.Response(200, json={"images": [{"url": gold}]})
        return httpx.Response(200, content=b"bytes")

    pipeline = CharmPipeline.build(settings, mock_client(handler), storage)

    with pytest.raises(PipelineStageError, match="no image URL") as excinfo:
        await pipeline.run(charm_request)

    assert excinfo.value.stage == "synthesis"
    # only the original was stored; derivation never ran
    assert len(storage.puts) == 1


@pytest.mark.asyncio
async def test_storage_outage_degrades_but_completes(settings, mock_client, failing_storage, charm_request):
    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == VISION_HOST:
            return vision_response(json.dumps(VISION_JSON))
        if host == SYNTHESIS_HOST:
            return synthesis_response()
        # placeholder original is not resolvable by the transform endpoint
        return httpx.Response(404, text="not found")

    pipeline = CharmPipeline.build(settings, mock_client(handler), failing_storage)
    result = await pipeline.run(charm_request)

    assert result.original_url.startswith(settings.STORAGE_PLACEHOLDER_BASE_URL)
    assert result.working_image_source == WorkingImageSource.LOCAL_FALLBACK
    assert result.silver_url == result.gold_url == GOLD_URL


@pytest.mark.asyncio
async def test_vision_outage_uses_defaults(settings, mock_client, storage, charm_request):
    def handler(request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == VISION_HOST:
            return httpx.Response(500, text="vision down")
        if host == SYNTHESIS_HOST:
            body = json.loads(request.content)
            assert body["prompt"] == settings.SYNTHESIS_DEFAULT_INSTRUCTION
            return synthesis_response()
        return httpx.Response(200, content=b"bytes")

    result = await CharmPipeline.build(settings, mock_client(handler), storage).run(charm_request)
    assert result.description.label == "Custom Charm"


@pytest.mark.parametrize(
    "image,email",
    [(b"", "someone@example.com"), (b"data", ""), (b"data", "   ")],
)
def test_validation_rejects_missing_fields(image, email):
    with pytest.raises(ValidationError) as excinfo:
        validate_request(CharmRequest(image=image, email=email))
    assert excinfo.value.code == 400


def test_validation_rejects_oversized_image():
    with pytest.raises(ValidationError, match="exceeds"):
        validate_request(CharmRequest(image=b"x" * 11, email="a@b.c"), max_image_size_bytes=10)


@pytest.mark.asyncio
async def test_run_validates_before_any_stage(settings, mock_client, storage):
    def handler(request: httpx.Request) -> httpx.Response:
        pytest.fail("no stage should run")

    pipeline = CharmPipeline.build(settings, mock_client(handler), storage)
    with pytest.raises(ValidationError):
        await pipeline.run(CharmRequest(image=b"", email="a@b.c"))
    assert storage.puts == []
