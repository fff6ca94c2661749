from fastapi import APIRouter

from .notifications import notifications_router

batch_router = APIRouter()

# Include sub-routers
batch_router.include_router(
    notifications_router,
    prefix="/notifications",
    tags=["Batch - Notification Queue"],
)
