"""
Stage 2: Vision Description

Asks a vision-capable chat model for a product name, a short marketing
description and a synthesis prompt for the working image. Any failure
(transport, timeout, non-2xx, unparseable output) yields the literal
defaults; this stage never aborts the pipeline.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from charmsmith.core.config import Settings
from charmsmith.core.exceptions import ExternalAPIError
from charmsmith.core.logging import get_logger, with_logging
from charmsmith.core.metrics import record_external_call
from charmsmith.pipeline.json_extract import parse_json_from_content
from charmsmith.pipeline.schemas import Description, WorkingImage

logger = get_logger(__name__)

VISION_INSTRUCTION = """Analyze the input image and return ONLY a valid JSON object with keys productName, story, and prompt. Do not include markdown, code fences, or explanations.

For productName and story:
- productName: Short, catchy (max 3 words) for a jewelry charm derived from this image.
- story: 2–3 sentences describing a compelling jewelry product description that highlights beauty, craftsmanship, and appeal of the charm created from this image.

For prompt (strict format):
- Give a basic, short description of what needs to be converted into the charm using only nouns and count (e.g., "a dog", "two men", "a car", "a couple"). Do NOT include any colors, materials, sizes, or adjectives.
- Then produce the prompt exactly in this format using that description:
  Convert this image of <basic short description> into a 3D figurine gold charm. Image style- product photography. product centered on a white background. keep a small loop at the top. output should look like a finished jewelry charm, therefore ensure it is a one piece casting, don't keep sharp edges as well. there should be no color used apart from gold.


Return JSON format only:
{
  "productName": "Short, catchy (max 3 words)",
  "story": "2–3 sentences product description",
  "prompt": "Convert this image of <basic short description, e.g. a dog, two people, a car> into a 3D figurine gold charm. Image style- product photography. product centered on a white background. keep a small loop at the top. output should look like a finished jewelry charm, therefore ensure it is a one piece casting, don't keep sharp edges as well. there should be no color used apart from gold."
}"""


def _text_field(parsed: Any, key: str) -> Optional[str]:
    if not isinstance(parsed, dict):
        return None
    value = parsed.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


class VisionDescriber:
    """Derives a Description from the working image."""

    def __init__(self, config: Settings, client: httpx.AsyncClient):
        self.config = config
        self.client = client

    def defaults(self) -> Description:
        return Description(instruction=self.config.SYNTHESIS_DEFAULT_INSTRUCTION)

    def build_payload(self, image: WorkingImage) -> Dict[str, Any]:
        return {
            "model": self.config.VISION_MODEL,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_INSTRUCTION},
                        {"type": "image_url", "image_url": {"url": image.data_url()}},
                    ],
                }
            ],
            "max_tokens": self.config.VISION_MAX_TOKENS,
            "temperature": self.config.VISION_TEMPERATURE,
        }

    async def _request(self, image: WorkingImage) -> str:
        headers = {"Content-Type": "application/json"}
        if self.config.OPENAI_API_KEY:
            headers["Authorization"] = f"Bearer {self.config.OPENAI_API_KEY}"

        response = await self.client.post(
            self.config.OPENAI_API_URL,
            json=self.build_payload(image),
            headers=headers,
        )
        if not response.is_success:
            record_external_call("vision", "error", response.status_code)
            raise ExternalAPIError(
                f"Vision API error: {response.status_code}",
                service="vision",
                http_status=response.status_code,
                body=response.text,
            )

        record_external_call("vision", "success", response.status_code)
        result = response.json()
        return str(result["choices"][0]["message"]["content"])

    def to_description(self, parsed: Any) -> Description:
        defaults = self.defaults()
        return Description(
            label=_text_field(parsed, "productName") or defaults.label,
            summary=_text_field(parsed, "story") or defaults.summary,
            instruction=_text_field(parsed, "prompt") or defaults.instruction,
        )

    @with_logging("vision")
    async def describe(
        self,
        image: WorkingImage,
        summary_override: Optional[str] = None
    ) -> Description:
        """
        Describe the working image.

        Args:
            image: Working image from the preprocessor
            summary_override: Caller-supplied text that replaces only the summary

        Returns:
            Fully populated Description
        """
        try:
            content = await asyncio.wait_for(
                self._request(image),
                timeout=self.config.VISION_TIMEOUT_SECONDS
            )
            logger.debug("vision_raw_content", content=content)
            description = self.to_description(parse_json_from_content(content))
        except asyncio.TimeoutError:
            record_external_call("vision", "timeout")
            logger.warning("vision_timeout", timeout_seconds=self.config.VISION_TIMEOUT_SECONDS)
            description = self.defaults()
        except Exception as e:
            logger.warning("vision_failed", error=str(e), error_type=type(e).__name__)
            description = self.defaults()

        if summary_override and summary_override.strip():
            description = description.model_copy(update={"summary": summary_override})

        logger.info(
            "vision_completed",
            label=description.label,
            instruction_preview=description.instruction[:160]
        )
        return description
