from typing import Annotated
from fastapi import APIRouter, Depends, Request

from certsync.schemas.workflow_schemas import UserStatusChangeRequest
from certsync.services.sync_service import SystemSyncService, get_sync_service
from certsync.utils.responses import ResponseBuilder

users_router = APIRouter()


@users_router.patch("/{user_id}/status")
async def change_user_status(
    user_id: str,
    change: UserStatusChangeRequest,
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
):
    """Change an account status and notify the user"""
    result = await sync_service.orchestrator.change_user_status(
        user_id, change.status, admin_id=change.admin_id
    )
    message = (
        f"User status changed to {change.status.value}"
        if result.applied
        else f"User already {change.status.value}"
    )
    return ResponseBuilder.success(
        request=request, data=result.model_dump(by_alias=True), message=message
    )
