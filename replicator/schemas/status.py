"""Pydantic schemas for health and status endpoints."""

from typing import Dict, List, Optional
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Response model for liveness and readiness probes."""
    status: str


class ReportSummary(BaseModel):
    """Outcome counts of the last handled event for one ConfigMap."""
    source: str
    action: str
    outcomes: Dict[str, int]
    failed_targets: List[str]
    conflicting_targets: List[str]


class StatusResponse(BaseModel):
    """Response model for dispatcher counters."""
    running: bool
    synced: bool
    reconciliation_interval_seconds: float
    events_received: int
    events_handled: int
    handler_failures: int
    policy_errors: int
    resync_count: int
    watch_restarts: int
    last_resync_at: Optional[float] = None
    reports: List[ReportSummary]
