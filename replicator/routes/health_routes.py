"""Liveness, readiness and status routes."""

from fastapi import APIRouter, Depends, HTTPException, status

from replicator.convergence import Outcome
from replicator.dispatcher import EventDispatcher
from replicator.schemas.status import HealthResponse, ReportSummary, StatusResponse

router = APIRouter()

_dispatcher: EventDispatcher = None


def set_dispatcher(dispatcher: EventDispatcher):
    """Set the global dispatcher instance"""
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher() -> EventDispatcher:
    """Dependency to get the dispatcher"""
    if _dispatcher is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Dispatcher not started")
    return _dispatcher


@router.get("/healthz", response_model=HealthResponse)
async def healthz(dispatcher: EventDispatcher = Depends(get_dispatcher)):
    """Liveness: the dispatcher loops are running."""
    if not dispatcher.running:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Dispatcher stopped")
    return HealthResponse(status="ok")


@router.get("/readyz", response_model=HealthResponse)
async def readyz(dispatcher: EventDispatcher = Depends(get_dispatcher)):
    """Readiness: at least one full resync has completed."""
    if not dispatcher.synced.is_set():
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Initial resync pending")
    return HealthResponse(status="ready")


@router.get("/status", response_model=StatusResponse)
async def get_status(dispatcher: EventDispatcher = Depends(get_dispatcher)):
    stats = dispatcher.stats
    reports = [
        ReportSummary(
            source=source,
            action=report.action,
            outcomes=report.counts(),
            failed_targets=sorted(report.by_outcome(Outcome.FAILED)),
            conflicting_targets=sorted(report.by_outcome(Outcome.CONFLICT)),
        )
        for source, report in sorted(stats.last_reports.items())
    ]
    return StatusResponse(
        running=dispatcher.running,
        synced=dispatcher.synced.is_set(),
        reconciliation_interval_seconds=dispatcher.interval,
        events_received=stats.events_received,
        events_handled=stats.events_handled,
        handler_failures=stats.handler_failures,
        policy_errors=stats.policy_errors,
        resync_count=stats.resync_count,
        watch_restarts=stats.watch_restarts,
        last_resync_at=stats.last_resync_at,
        reports=reports,
    )
