from typing import Annotated
from fastapi import APIRouter, Depends, Query, Request

from certsync.services.sync_service import SystemSyncService, get_sync_service
from certsync.utils.responses import ResponseBuilder

sync_router = APIRouter()


@sync_router.get("/validation")
async def run_validation(
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
    persist: bool = Query(False, description="Store the report in validation_reports"),
):
    """
    Run the consistency validator.

    Findings are advisory: an invalid report is returned as a warning
    response, not as an error.
    """
    report = await sync_service.run_validation(persist=persist)
    data = report.to_response()

    if report.is_valid:
        return ResponseBuilder.success(
            request=request, data=data, message="System validation passed"
        )
    return ResponseBuilder.warning(
        request=request,
        data=data,
        message="System validation found issues",
        warnings=[
            finding.message for finding in report.critical_errors + report.errors
        ],
    )


@sync_router.post("/resync")
async def force_resynchronize(
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
):
    """Re-drive pending template and document backlogs"""
    summary = await sync_service.force_resynchronize()
    return ResponseBuilder.success(
        request=request, data=summary, message="Re-synchronization completed"
    )


@sync_router.post("/bootstrap")
async def bootstrap_system(
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
):
    """Ensure an administrator exists and back-fill role permissions"""
    summary = await sync_service.bootstrap()
    return ResponseBuilder.success(
        request=request, data=summary, message="System bootstrap completed"
    )


@sync_router.get("/interactions/stats")
async def interaction_stats(
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
    limit: int = Query(100, ge=1, le=1000),
):
    stats = await sync_service.get_interaction_stats(limit=limit)
    return ResponseBuilder.success(
        request=request, data=stats, message="Interaction statistics retrieved"
    )


@sync_router.get("/statistics")
async def collection_statistics(
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
    refresh: bool = Query(False, description="Ignore the cached statistics"),
):
    stats = await sync_service.get_statistics(force_refresh=refresh)
    return ResponseBuilder.success(
        request=request, data=stats, message="System statistics retrieved"
    )
