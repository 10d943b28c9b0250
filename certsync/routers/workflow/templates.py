from typing import Annotated
from fastapi import APIRouter, Depends, Request

from certsync.schemas.workflow_schemas import TemplateReviewRequest
from certsync.services.sync_service import SystemSyncService, get_sync_service
from certsync.utils.responses import ResponseBuilder

templates_router = APIRouter()


@templates_router.post("/{template_id}/review")
async def review_template(
    template_id: str,
    review: TemplateReviewRequest,
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
):
    """
    Record a client reviewer decision.

    An approved template is activated in the same call.
    """
    result = await sync_service.orchestrator.on_template_reviewed(
        template_id, review.reviewer_id, review.decision, review.comments
    )
    return ResponseBuilder.success(
        request=request,
        data=result.model_dump(by_alias=True),
        message=f"Template review recorded ({review.decision.value})",
    )


@templates_router.post("/{template_id}/activate")
async def activate_template(
    template_id: str,
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
):
    result = await sync_service.orchestrator.activate_template(template_id)
    return ResponseBuilder.success(
        request=request,
        data=result.model_dump(by_alias=True),
        message="Template activated",
    )
