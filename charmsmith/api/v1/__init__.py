"""
API v1 Router Module

All v1 endpoints are prefixed with /api/v1/

- POST /api/v1/charms  - Photo to gold/silver charm renderings
- GET  /api/v1/metrics - Prometheus metrics
"""

from fastapi import APIRouter

from charmsmith.api.v1.charms import router as charms_router
from charmsmith.api.v1.metrics import router as metrics_router

# Main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(charms_router, prefix="/charms", tags=["charms"])
api_v1_router.include_router(metrics_router, tags=["metrics"])
