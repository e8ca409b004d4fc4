"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import approvals, deletion

api_router = APIRouter()

# Include sub-routers
api_router.include_router(deletion.router, prefix="/tenant", tags=["tenant-deletion"])
api_router.include_router(approvals.router, tags=["deletion-approvals"])
