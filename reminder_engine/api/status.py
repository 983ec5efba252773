"""
Status API routes.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from reminder_engine.broker import JobCategory
from reminder_engine.utils.errors import EntityNotFoundError

router = APIRouter(prefix="/api/status", tags=["status"])


@router.get("/live")
async def live():
    """Liveness probe: the process is up."""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness probe: engine running and both stores reachable."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "starting", "checks": {}},
        )

    checks = dict(await engine.is_ready())
    checks["engine"] = engine.is_running
    if not all(checks.values()):
        logger.warning(f"Readiness check failed: {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "checks": checks},
        )
    return {"status": "ready", "checks": checks}


@router.get("/workers")
async def workers(request: Request):
    """Worker pools with their job counts by status."""
    engine = request.app.state.engine
    return {
        "scheduler_running": engine.scheduler.is_running,
        "workers": await engine.worker_status(),
    }


@router.get("/dead-letters")
async def list_dead_letters(
    request: Request,
    category: Optional[JobCategory] = Query(None, description="Only records from this job category"),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of records"),
):
    """Most recent dead-letter records, newest first."""
    engine = request.app.state.engine
    records = await engine.broker.list_dead_letters(category=category, limit=limit)
    return {
        "records": [
            {
                "id": record.id,
                "original_category": record.original_category,
                "original_job_id": record.original_job_id,
                "original_payload": record.original_payload,
                "error": record.error,
                "error_kind": record.error_kind,
                "attempts_made": record.attempts_made,
                "failed_at": record.failed_at.isoformat() if record.failed_at else None,
            }
            for record in records
        ],
        "count": len(records),
    }


@router.post("/dead-letters/{record_id}/replay")
async def replay_dead_letter(record_id: str, request: Request):
    """Re-enqueue a dead-lettered job's original payload."""
    engine = request.app.state.engine
    try:
        job_id = await engine.broker.replay_dead_letter(record_id)
    except EntityNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)

    logger.info(f"Dead-letter record {record_id} replayed as {job_id}")
    return {"status": "queued", "job_id": job_id}
