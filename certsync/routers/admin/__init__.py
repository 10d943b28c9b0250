from fastapi import APIRouter

from .sync import sync_router

admin_router = APIRouter()

admin_router.include_router(sync_router, prefix="/sync", tags=["Admin - Synchronization"])
