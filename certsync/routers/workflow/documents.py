from typing import Annotated
from fastapi import APIRouter, Depends, Request

from certsync.schemas.workflow_schemas import DocumentReviewRequest
from certsync.services.sync_service import SystemSyncService, get_sync_service
from certsync.utils.responses import ResponseBuilder

documents_router = APIRouter()


@documents_router.post("/{document_id}/review")
async def review_document(
    document_id: str,
    review: DocumentReviewRequest,
    request: Request,
    sync_service: Annotated[SystemSyncService, Depends(get_sync_service)],
):
    """Verify or reject a pending document"""
    result = await sync_service.orchestrator.on_document_reviewed(
        document_id, review.verifier_id, review.decision, review.comments
    )
    return ResponseBuilder.success(
        request=request,
        data=result.model_dump(by_alias=True),
        message=f"Document {result.status}",
    )
