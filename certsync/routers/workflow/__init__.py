from fastapi import APIRouter

from .documents import documents_router
from .templates import templates_router
from .users import users_router

workflow_router = APIRouter()

workflow_router.include_router(
    templates_router, prefix="/templates", tags=["Workflow - Templates"]
)
workflow_router.include_router(
    documents_router, prefix="/documents", tags=["Workflow - Documents"]
)
workflow_router.include_router(users_router, prefix="/users", tags=["Workflow - Users"])
