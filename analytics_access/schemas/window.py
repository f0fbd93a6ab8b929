"""
analytics_access/schemas/window.py

Response schemas for the Renderer-facing API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from analytics_access.domain.models import FailureKind, HostMode
from analytics_access.scheduler.refresh import RefreshPhase, RefreshStatus


class RefreshStatusResponse(BaseModel):
    """
    Freshness of one registered query, for staleness and auth-required display.
    """

    spec_key: str
    label: str
    phase: RefreshPhase
    consecutive_failures: int = Field(..., ge=0)
    interval_seconds: float = Field(..., gt=0)
    stale: bool
    auth_required: bool
    last_success_at: datetime | None = None
    last_failure_kind: FailureKind | None = None
    last_failure_message: str | None = None

    @classmethod
    def from_status(cls, status: RefreshStatus) -> "RefreshStatusResponse":
        return cls(
            spec_key=status.spec_key,
            label=status.label,
            phase=status.phase,
            consecutive_failures=status.consecutive_failures,
            interval_seconds=status.interval_seconds,
            stale=status.stale,
            auth_required=status.auth_required,
            last_success_at=status.last_success_at,
            last_failure_kind=status.last_failure_kind,
            last_failure_message=status.last_failure_message,
        )


class QuerySummaryResponse(BaseModel):
    spec_key: str
    label: str
    entity: str
    fields: list[str]
    status: RefreshStatusResponse


class WindowResponse(BaseModel):
    """
    One contiguous slice of a query's current result set.
    """

    spec_key: str
    offset: int = Field(..., ge=0)
    length: int = Field(..., ge=0)
    total_rows: int = Field(..., ge=0)
    fetched_at: datetime | None = None
    sequence: int | None = None
    rows: list[dict[str, Any]]


class HostResponse(BaseModel):
    mode: HostMode
    host_name: str | None = None
    user_display_name: str | None = None
    auth_available: bool


class QueryDefinitionRequest(BaseModel):
    """
    Query definition in the same JSON form as the dashboard config file.
    """

    name: str | None = None
    entity: str = Field(..., min_length=1)
    fields: list[str] = Field(..., min_length=1)
    filter: dict[str, Any] | None = None
    order_by: list[str] = Field(default_factory=list)
    page_size: int = 1000
    group_by: list[str] = Field(default_factory=list)
    aggregates: list[dict[str, Any]] = Field(default_factory=list)
