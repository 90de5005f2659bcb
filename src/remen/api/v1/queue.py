"""
Queue API Router

Endpoints:
    GET  /status - Snapshot of the enrichment queue.
    POST /cancel - Cancel every queued job and the running one.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from remen.api.v1.notes import get_services
from remen.core.container import ServiceContainer
from remen.models.schemas import QueueStatus
from remen.schemas.notes import CancelResponse

router = APIRouter()


@router.get("/status", response_model=QueueStatus)
async def queue_status(services: ServiceContainer = Depends(get_services)) -> QueueStatus:
    return services.queue.get_status()


@router.post("/cancel", response_model=CancelResponse)
async def cancel_all(services: ServiceContainer = Depends(get_services)) -> CancelResponse:
    return CancelResponse(cancelled=await services.queue.cancel_all())
