from fastapi import APIRouter

from .health import health_router

shared_router = APIRouter()

shared_router.include_router(
    health_router, prefix="/health", tags=["Shared - Health Checks"]
)
