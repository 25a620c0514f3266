"""
Performance API routes.

Provides endpoints for:
- GET /api/performance - Aggregate statistics and targets
- GET /api/performance/{request_id} - Timings of one request
- POST /api/performance/cleanup - Drop records past retention
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from talkar.api.routes import get_orchestrator
from talkar.models.schemas import PerformanceRecord
from talkar.services.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/performance", tags=["performance"])


@router.get("")
async def get_performance_summary(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    """
    Aggregate performance statistics.

    Returns:
        Summary over the recent window plus the configured targets
    """
    tracker = orchestrator.tracker
    return {
        "summary": tracker.get_summary().model_dump(),
        "targets": tracker.targets.model_dump(),
    }


@router.post("/cleanup")
async def cleanup_performance_records(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Remove records older than the retention window."""
    return {"removed": orchestrator.tracker.cleanup()}


@router.get("/{request_id}", response_model=PerformanceRecord)
async def get_performance_record(
    request_id: str,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PerformanceRecord:
    """
    Timings of one request (the job id for pipeline runs).

    Raises:
        HTTPException: 404 if no record exists
    """
    record = orchestrator.tracker.get_record(request_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No performance record: {request_id}")
    return record
