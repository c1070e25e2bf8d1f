"""
Stage 3: Gold Synthesis

Generative image-edit call that turns the working image into the gold charm
rendering. Each attempt is bounded by a timeout and the whole call by a
small retry budget; exhausting it is the only terminal pipeline failure.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from charmsmith.core.config import Settings
from charmsmith.core.exceptions import SynthesisError
from charmsmith.core.logging import get_logger, with_logging
from charmsmith.core.metrics import record_external_call
from charmsmith.pipeline.retry import retry_with_backoff
from charmsmith.pipeline.schemas import WorkingImage

logger = get_logger(__name__)


class ImageSynthesizer:
    """Produces the gold rendering URL."""

    def __init__(
        self,
        config: Settings,
        client: httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.client = client
        self.sleep = sleep

    def resolve_instruction(self, instruction: Optional[str]) -> str:
        if instruction and instruction.strip():
            return instruction
        return self.config.SYNTHESIS_DEFAULT_INSTRUCTION

    def build_payload(self, image: WorkingImage, instruction: str) -> Dict[str, Any]:
        return {
            "image_url": image.data_url(),
            "prompt": instruction,
            "num_inference_steps": self.config.SYNTHESIS_INFERENCE_STEPS,
            "guidance_scale": self.config.SYNTHESIS_GUIDANCE_SCALE,
            "num_images": 1,
            "output_format": self.config.SYNTHESIS_OUTPUT_FORMAT,
            "loras": [{
                "path": self.config.SYNTHESIS_LORA_URL,
                "scale": self.config.SYNTHESIS_LORA_SCALE,
            }],
        }

    async def _attempt(self, payload: Dict[str, Any]) -> str:
        headers = {"Content-Type": "application/json"}
        if self.config.FAL_API_KEY:
            headers["Authorization"] = f"Key {self.config.FAL_API_KEY}"

        response = await self.client.post(
            self.config.FAL_API_URL,
            json=payload,
            headers=headers,
        )

        if not response.is_success:
            record_external_call("synthesis", "error", response.status_code)
            logger.error(
                "synthesis_api_error",
                http_status=response.status_code,
                body=response.text
            )
            raise SynthesisError(
                f"Synthesis API error: {response.status_code} - {response.text}",
                http_status=response.status_code,
                body=response.text,
            )

        record_external_call("synthesis", "success", response.status_code)
        result = response.json()
        try:
            url = result["images"][0]["url"]
        except (KeyError, IndexError, TypeError):
            url = None
        if not isinstance(url, str) or not url.strip():
            raise SynthesisError(
                "Synthesis API returned no image URL",
                http_status=response.status_code,
                body=response.text,
            )
        return url

    async def _attempt_with_timeout(self, payload: Dict[str, Any]) -> str:
        try:
            return await asyncio.wait_for(
                self._attempt(payload),
                timeout=self.config.SYNTHESIS_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            record_external_call("synthesis", "timeout")
            raise SynthesisError(
                f"Synthesis API timeout after {self.config.SYNTHESIS_TIMEOUT_SECONDS}s"
            )

    @with_logging("synthesis")
    async def synthesize(self, image: WorkingImage, instruction: Optional[str] = None) -> str:
        """
        Generate the gold rendering.

        Args:
            image: Working image
            instruction: Prompt from the vision stage; empty means default

        Returns:
            URL of the generated image

        Raises:
            SynthesisError: once the retry budget is exhausted
        """
        resolved = self.resolve_instruction(instruction)
        logger.info("synthesis_prompt", prompt_preview=resolved[:160])
        payload = self.build_payload(image, resolved)

        gold_url = await retry_with_backoff(
            lambda: self._attempt_with_timeout(payload),
            max_retries=self.config.SYNTHESIS_MAX_RETRIES,
            base_delay=self.config.SYNTHESIS_RETRY_BASE_DELAY_SECONDS,
            sleep=self.sleep,
        )
        logger.info("gold_rendering_ready", url=gold_url)
        return gold_url
