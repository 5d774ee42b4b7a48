"""HTTP surface for starting, watching and aborting sync runs."""

import asyncio
import logging
import os
import sys
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.config import get_env
from shared.errors import RemoteUnavailable, SyncError
from services.sync_service.components import build_components, verify_prerequisites
from services.sync_service.notifications import NotificationService

logging.basicConfig(
    level=getattr(logging, get_env("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

SERVICE_VERSION = "0.1.0"


class SyncJob(BaseModel):
    """In-memory record of one sync run started over HTTP."""
    job_id: str
    status: str = "queued"
    dry_run: bool = False
    created_at: datetime
    completed_at: Optional[datetime] = None
    summary: Optional[dict] = None
    error_message: Optional[str] = None


# Jobs live for the lifetime of the process
jobs: Dict[str, SyncJob] = {}
cancel_events: Dict[str, asyncio.Event] = {}
notification_service: Optional[NotificationService] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global notification_service

    logger.info("Sync service starting, notifications configured from environment")
    notification_service = NotificationService()

    yield

    for event in cancel_events.values():
        event.set()
    logger.info(f"Sync service stopped; cancelled {len(cancel_events)} active jobs")


app = FastAPI(
    title="ink2notion sync service",
    description="Synchronizes reMarkable notebooks into a Notion database",
    version=SERVICE_VERSION,
    lifespan=lifespan
)


@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc)
            }
        )


@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    running = sum(1 for job in jobs.values() if job.status == "running")
    return {
        "status": "healthy",
        "service": "sync_service",
        "version": SERVICE_VERSION,
        "jobs": {
            "total": len(jobs),
            "running": running
        }
    }


@app.get("/", status_code=status.HTTP_200_OK)
async def root():
    """Root endpoint."""
    return {
        "service": "ink2notion sync service",
        "version": SERVICE_VERSION,
        "status": "running"
    }


class SyncExecuteRequest(BaseModel):
    """Request model for sync execution."""
    backup_dir: Optional[str] = None
    dry_run: bool = False
    max_workers: Optional[int] = None
    job_id: Optional[str] = None  # generated when omitted


class SyncExecuteResponse(BaseModel):
    """Returned as soon as a job is queued."""
    job_id: str
    status: str
    message: str


class SyncStatusResponse(BaseModel):
    """Response model for sync status."""
    job_id: str
    status: str
    dry_run: bool
    summary: Optional[dict] = None
    created_at: str
    completed_at: Optional[str] = None
    error_message: Optional[str] = None


def _parse_job_id(job_id: str) -> str:
    try:
        return str(uuid.UUID(job_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid job_id format"
        )


def _finish(job: SyncJob, job_status: str, error_message: Optional[str] = None) -> None:
    job.status = job_status
    job.error_message = error_message
    job.completed_at = datetime.now(timezone.utc)


async def run_sync_job(job: SyncJob, request: SyncExecuteRequest) -> None:
    """
    Run one sync job to completion and record its outcome.

    A run with per-notebook failures still completes; the job fails only
    when configuration, prerequisites or the remote index are unusable.
    """
    cancel_event = cancel_events.setdefault(job.job_id, asyncio.Event())
    job.status = "running"
    logger.info(f"Starting sync job {job.job_id} (dry_run={job.dry_run})")

    try:
        components = build_components(
            backup_dir=request.backup_dir,
            max_workers=request.max_workers,
            dry_run=request.dry_run,
            notification_service=notification_service
        )
    except ValueError as e:
        logger.error(f"Sync job {job.job_id} has invalid configuration: {e}")
        _finish(job, "failed", f"Configuration error: {e}")
        cancel_events.pop(job.job_id, None)
        return

    try:
        await verify_prerequisites(components, dry_run=request.dry_run)
        summary = await components.orchestrator.run(cancel_event=cancel_event, run_id=job.job_id)
        job.summary = summary.to_dict()
        _finish(job, "cancelled" if cancel_event.is_set() else "completed")
        logger.info(f"Sync job {job.job_id} {job.status}: {job.summary}")

    except (SyncError, RemoteUnavailable) as e:
        logger.error(f"Sync job {job.job_id} failed: {e}")
        _finish(job, "failed", str(e))

    except Exception as e:
        logger.error(f"Sync job {job.job_id} failed with unexpected error: {e}", exc_info=True)
        _finish(job, "failed", f"Unexpected error: {e}")
        if notification_service:
            await notification_service.send_critical_error_notification(
                error_message=str(e),
                run_id=job.job_id,
                context={"error_type": type(e).__name__}
            )

    finally:
        cancel_events.pop(job.job_id, None)
        await components.aclose()


@app.post("/internal/sync/execute", response_model=SyncExecuteResponse, status_code=status.HTTP_200_OK)
async def execute_sync(request: SyncExecuteRequest, background_tasks: BackgroundTasks):
    """
    Execute a synchronization job asynchronously.

    This endpoint initiates a sync run and returns immediately with the
    job_id. The run itself happens in the background; use the
    /internal/sync/status/{job_id} endpoint to check on it.

    Args:
        request: SyncExecuteRequest with optional backup_dir, dry_run, max_workers and job_id
        background_tasks: FastAPI background tasks

    Returns:
        SyncExecuteResponse with job_id and queued status (returns immediately)
    """
    job_id = _parse_job_id(request.job_id) if request.job_id else str(uuid.uuid4())

    existing = jobs.get(job_id)
    if existing and existing.status in ("queued", "running"):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Sync job {job_id} is already {existing.status}"
        )

    logger.info(f"Received sync execute request for job {job_id}")

    job = SyncJob(job_id=job_id, dry_run=request.dry_run, created_at=datetime.now(timezone.utc))
    jobs[job_id] = job
    cancel_events[job_id] = asyncio.Event()

    background_tasks.add_task(run_sync_job, job, request)

    return SyncExecuteResponse(
        job_id=job_id,
        status="queued",
        message=f"Poll /internal/sync/status/{job_id} for progress"
    )


@app.get("/internal/sync/status/{job_id}", response_model=SyncStatusResponse, status_code=status.HTTP_200_OK)
async def get_sync_status(job_id: str):
    """
    Get the status of a sync job.

    Args:
        job_id: The sync job ID to query

    Returns:
        SyncStatusResponse with current job state

    Raises:
        HTTPException: If job_id is invalid or job not found
    """
    job_id = _parse_job_id(job_id)
    job = jobs.get(job_id)

    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Sync job {job_id} not found"
        )

    return SyncStatusResponse(
        job_id=job.job_id,
        status=job.status,
        dry_run=job.dry_run,
        summary=job.summary,
        created_at=job.created_at.isoformat(),
        completed_at=job.completed_at.isoformat() if job.completed_at else None,
        error_message=job.error_message
    )


class AbortSyncResponse(BaseModel):
    """Response model for abort sync."""
    job_id: str
    status: str
    message: str


@app.post("/internal/sync/abort/{job_id}", response_model=AbortSyncResponse, status_code=status.HTTP_200_OK)
async def abort_sync(job_id: str):
    """
    Ask a running sync job to stop.

    Notebooks already in progress finish; no new notebook is started.

    Raises:
        HTTPException: If job_id is invalid, job not found, or job already finished
    """
    job_id = _parse_job_id(job_id)
    job = jobs.get(job_id)

    if not job:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Sync job {job_id} not found"
        )

    event = cancel_events.get(job_id)
    if job.status in ("completed", "failed", "cancelled") or event is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot abort job with status '{job.status}'"
        )

    event.set()
    logger.info(f"Cancellation requested for sync job {job_id}")

    return AbortSyncResponse(
        job_id=job_id,
        status="cancelling",
        message="No new notebooks will be started"
    )


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("SYNC_SERVICE_PORT", 8005))
    uvicorn.run(app, host="0.0.0.0", port=port)
