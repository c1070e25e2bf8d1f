"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.

A single Settings instance is built at startup and handed to every
pipeline stage through its constructor.
"""

from pydantic_settings import BaseSettings
from typing import Optional


DEFAULT_SYNTHESIS_INSTRUCTION = (
    "Convert the input image into a 3D figurine gold charm. Image style- product photography. "
    "product centered on a white background. keep a small loop at the top. output should look "
    "like a finished jewelry charm, therefore ensure it is a one piece casting, don't keep sharp "
    "edges as well. there should be no color used apart from gold."
)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Charmsmith Charm Generation Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Vision Service (OpenAI-compatible chat completions)
    # ==========================================================================
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_API_URL: str = "https://api.openai.com/v1/chat/completions"
    VISION_MODEL: str = "gpt-4o-mini"
    VISION_TIMEOUT_SECONDS: float = 15.0
    VISION_MAX_TOKENS: int = 400
    VISION_TEMPERATURE: float = 0.4

    # ==========================================================================
    # Synthesis Service (fal image edit)
    # ==========================================================================
    FAL_API_KEY: Optional[str] = None
    FAL_API_URL: str = "https://fal.run/fal-ai/qwen-image-edit-lora"
    SYNTHESIS_LORA_URL: str = (
        "https://v3b.fal.media/files/b/elephant/26yNtCrAVeYIwHAaEv-Dw_pytorch_lora_weights.safetensors"
    )
    SYNTHESIS_LORA_SCALE: float = 1.0
    SYNTHESIS_INFERENCE_STEPS: int = 50
    SYNTHESIS_GUIDANCE_SCALE: float = 4.0
    SYNTHESIS_OUTPUT_FORMAT: str = "jpeg"
    SYNTHESIS_TIMEOUT_SECONDS: float = 90.0
    SYNTHESIS_MAX_RETRIES: int = 1
    SYNTHESIS_RETRY_BASE_DELAY_SECONDS: float = 1.0
    SYNTHESIS_DEFAULT_INSTRUCTION: str = DEFAULT_SYNTHESIS_INSTRUCTION

    # ==========================================================================
    # Image Transformation Endpoint
    # ==========================================================================
    TRANSFORM_BASE_URL: str = "https://api.beuken.ai/cdn-cgi/image"
    WORKING_IMAGE_SIZE: int = 1024
    JPEG_QUALITY: int = 95

    # Ambient timeout for transform / storage fetches
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # ==========================================================================
    # Storage Settings (The Bridge Pattern)
    # ==========================================================================
    STORAGE_ENABLED: bool = True
    LOCAL_STORAGE_PATH: str = "./data/storage"
    STORAGE_PUBLIC_BASE_URL: str = "http://localhost:8000/static/storage"
    STORAGE_PLACEHOLDER_BASE_URL: str = "https://storage.example.com/uploads"

    # ==========================================================================
    # Upload Limits
    # ==========================================================================
    MAX_IMAGE_SIZE_BYTES: int = 10485760  # 10MB

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Process-wide instance used by the application factory
settings = Settings()
