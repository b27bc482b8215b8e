"""
app/api/routers package marker.
"""

from app.api.routers.costs_router import router as costs_router
from app.api.routers.failed_jobs_router import router as failed_jobs_router
from app.api.routers.metrics_router import router as metrics_router
from app.api.routers.pipeline_router import router as pipeline_router
from app.api.routers.schedules_router import router as schedules_router

__all__ = [
    "costs_router",
    "failed_jobs_router",
    "metrics_router",
    "pipeline_router",
    "schedules_router",
]
