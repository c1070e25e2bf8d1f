import asyncio
import json

import httpx
import pytest

from charmsmith.core.config import DEFAULT_SYNTHESIS_INSTRUCTION
from charmsmith.pipeline.schemas import (
    DEFAULT_LABEL,
    DEFAULT_SUMMARY,
    Description,
    WorkingImage,
    WorkingImageSource,
)
from charmsmith.pipeline.vision import VisionDescriber

from conftest import VISION_HOST, vision_response

GOOD = {
    "productName": "Loyal Friend",
    "story": "A faithful companion cast in gold.",
    "prompt": "Convert this image of a dog into a 3D figurine gold charm.",
}

DEFAULTS = Description(
    label=DEFAULT_LABEL,
    summary=DEFAULT_SUMMARY,
    instruction=DEFAULT_SYNTHESIS_INSTRUCTION,
)


@pytest.fixture
def working_image():
    return WorkingImage(
        data=b"\xff\xd8jpeg",
        content_type="image/jpeg",
        size=64,
        source=WorkingImageSource.LOCAL_FALLBACK,
    )


@pytest.mark.asyncio
async def test_request_shape_and_parsed_description(settings, mock_client, working_image):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        assert request.url.host == VISION_HOST
        return vision_response(json.dumps(GOOD))

    describer = VisionDescriber(settings, mock_client(handler))
    description = await describer.describe(working_image)

    assert description == Description(
        label=GOOD["productName"], summary=GOOD["story"], instruction=GOOD["prompt"]
    )
    body = captured["body"]
    assert captured["auth"] == "Bearer sk-test"
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 400
    parts = body["messages"][0]["content"]
    assert "ONLY a valid JSON object" in parts[0]["text"]
    assert parts[1]["image_url"]["url"] == working_image.data_url()


@pytest.mark.asyncio
async def test_fenced_content_is_parsed(settings, mock_client, working_image):
    def handler(request: httpx.Request) -> httpx.Response:
        return vision_response(f"```json\n{json.dumps(GOOD)}\n```")

    description = await VisionDescriber(settings, mock_client(handler)).describe(working_image)
    assert description.label == "Loyal Friend"


@pytest.mark.asyncio
async def test_timeout_yields_default_triplet(settings, mock_client, working_image):
    settings.VISION_TIMEOUT_SECONDS = 0.05

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(1)
        return vision_response(json.dumps(GOOD))

    description = await VisionDescriber(settings, mock_client(handler)).describe(working_image)
    assert description == DEFAULTS


@pytest.mark.asyncio
async def test_http_error_yields_defaults(settings, mock_client, working_image):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    description = await VisionDescriber(settings, mock_client(handler)).describe(working_image)
    assert description == DEFAULTS


@pytest.mark.asyncio
async def test_unparseable_content_yields_defaults(settings, mock_client, working_image):
    def handler(request: httpx.Request) -> httpx.Response:
        return vision_response("I'm sorry, I can't help with that.")

    description = await VisionDescriber(settings, mock_client(handler)).describe(working_image)
    assert description == DEFAULTS


@pytest.mark.asyncio
async def test_missing_fields_fall_back_individually(settings, mock_client, working_image):
    def handler(request: httpx.Request) -> httpx.Response:
        return vision_response(json.dumps({"productName": "Tiny Car", "story": ""}))

    description = await VisionDescriber(settings, mock_client(handler)).describe(working_image)
    assert description.label == "Tiny Car"
    assert description.summary == DEFAULT_SUMMARY
    assert description.instruction == DEFAULT_SYNTHESIS_INSTRUCTION


@pytest.mark.asyncio
async def test_summary_override_replaces_only_summary(settings, mock_client, working_image):
    def handler(request: httpx.Request) -> httpx.Response:
        return vision_response(json.dumps(GOOD))

    description = await VisionDescriber(settings, mock_client(handler)).describe(
        working_image, summary_override="Our first trip to the sea."
    )
    assert description.summary == "Our first trip to the sea."
    assert description.label == GOOD["productName"]
    assert description.instruction == GOOD["prompt"]


@pytest.mark.asyncio
async def test_summary_override_applies_to_defaults(settings, mock_client, working_image):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    description = await VisionDescriber(settings, mock_client(handler)).describe(
        working_image, summary_override="Custom words"
    )
    assert description.summary == "Custom words"
    assert description.label == DEFAULT_LABEL
    assert description.instruction == DEFAULT_SYNTHESIS_INSTRUCTION
