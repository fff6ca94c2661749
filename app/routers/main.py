from fastapi import APIRouter

from app.routers.shared import shared_router
from app.routers.batch import batch_router

main_router = APIRouter()

# Include domain-based routers
main_router.include_router(shared_router, tags=["Shared Services"])
main_router.include_router(batch_router, prefix="/batch", tags=["Batch"])
