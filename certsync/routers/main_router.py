from fastapi import APIRouter

from certsync.routers.admin import admin_router
from certsync.routers.shared import shared_router
from certsync.routers.workflow import workflow_router

main_router = APIRouter()
main_router.include_router(shared_router, prefix="/shared")
main_router.include_router(admin_router, prefix="/admin")
main_router.include_router(workflow_router, prefix="/workflow")
