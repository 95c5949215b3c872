"""Pydantic schemas for the status API."""

from replicator.schemas.status import (
    HealthResponse,
    ReportSummary,
    StatusResponse
)

__all__ = [
    "HealthResponse",
    "ReportSummary",
    "StatusResponse"
]
