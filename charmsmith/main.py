"""
Charmsmith - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
- Storage abstraction served from /static/storage
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from charmsmith.core.config import Settings, settings as default_settings
from charmsmith.core.logging import setup_logging, get_logger
from charmsmith.core.exceptions import register_exception_handlers
from charmsmith.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from charmsmith.core.storage import IStorage, StorageFactory
from charmsmith.api.v1 import api_v1_router
from charmsmith.pipeline.orchestrator import CharmPipeline

logger = get_logger(__name__)


def create_app(
    config: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
    storage: Optional[IStorage] = None,
) -> FastAPI:
    """
    Build the application.

    Tests pass their own client (with a mock transport) and storage; in
    production both are created from settings inside the lifespan.
    """
    config = config or default_settings

    setup_logging(
        log_level=config.LOG_LEVEL,
        json_format=config.LOG_FORMAT_JSON
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler - startup and shutdown."""
        logger.info(
            "application_starting",
            app_name=config.APP_NAME,
            version=config.APP_VERSION,
            environment=config.ENVIRONMENT
        )

        owns_client = client is None
        http_client = client or httpx.AsyncClient(
            timeout=config.HTTP_TIMEOUT_SECONDS,
            follow_redirects=True
        )
        app_storage = storage or StorageFactory.get_storage(config)

        app.state.settings = config
        app.state.storage = app_storage
        app.state.pipeline = CharmPipeline.build(config, http_client, app_storage)

        set_app_info(version=config.APP_VERSION, environment=config.ENVIRONMENT)
        logger.info("application_ready")

        yield

        logger.info("application_shutting_down")
        if owns_client:
            await http_client.aclose()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title=config.APP_NAME,
        description="""
        Photo-to-charm generation pipeline:

        - **Preprocess**: remote transform to a 1024px padded greyscale JPEG, local fallback
        - **Describe**: vision model derives name, story and synthesis prompt
        - **Synthesize**: image-edit model renders the gold charm (90s timeout, 1 retry)
        - **Derive**: desaturated silver charm via an ordered fallback chain
        """,
        version=config.APP_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_timing(request: Request, call_next):
        """Track request timing for metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        http_requests_total.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()

        response.headers["X-Process-Time"] = str(duration)
        return response

    register_exception_handlers(app)
    app.include_router(api_v1_router)

    # Serve locally stored assets at the public base URL's path
    storage_dir = Path(config.LOCAL_STORAGE_PATH)
    storage_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/static/storage", StaticFiles(directory=str(storage_dir)), name="storage")

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": config.APP_NAME,
            "version": config.APP_VERSION,
            "environment": config.ENVIRONMENT,
            "docs": "/api/docs",
            "api_v1": "/api/v1",
            "metrics": "/api/v1/metrics"
        }

    @app.get("/health", tags=["health"])
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": config.APP_VERSION
        }

    return app


app = create_app()


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "charmsmith.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
