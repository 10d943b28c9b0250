from typing import Annotated
from fastapi import APIRouter, Depends, Request

from certsync.config.settings import settings
from certsync.services.health.severity import HealthStatus
from certsync.services.sync_service import SystemSyncService, get_sync_service
from certsync.utils.responses import ResponseBuilder

health_router = APIRouter()


@health_router.get("/")
async def health_check(request: Request):
    """
    Basic health check endpoint

    Returns application status and basic system information
    """
    return ResponseBuilder.success(
        request=request,
        data={"status": "healthy", "service": settings.NAME, "version": settings.VERSION},
        message="Service is running",
    )


@health_router.get("/system")
async def system_health(
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
):
    """
    Run every component probe and return the reduced system status.

    The overall status is the most severe component status.
    """
    overall = await sync_service.check_health()
    data = overall.model_dump(by_alias=True)

    if overall.status == HealthStatus.HEALTHY:
        return ResponseBuilder.success(
            request=request, data=data, message="All systems healthy"
        )
    return ResponseBuilder.warning(
        request=request,
        data=data,
        message=f"System status is {overall.status.value}",
        warnings=[
            f"{name}: {component.message}"
            for name, component in overall.components.items()
            if component.status != HealthStatus.HEALTHY
        ],
    )
