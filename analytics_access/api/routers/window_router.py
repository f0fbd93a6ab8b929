"""
analytics_access/api/routers/window_router.py

Renderer-facing query endpoints.

Window reads slice the current result set and never trigger a fetch.
``POST /queries`` registers a query for polling, ``DELETE`` stops it, and
``POST /queries/{key}/refresh`` asks the scheduler for an early tick.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from analytics_access.api.dependencies import get_runtime
from analytics_access.errors import InvalidQuerySpec, UnknownQueryError
from analytics_access.query.loader import parse_query_definition
from analytics_access.runtime import DataAccessRuntime
from analytics_access.schemas.window import (
    QueryDefinitionRequest,
    QuerySummaryResponse,
    RefreshStatusResponse,
    WindowResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queries", tags=["queries"])

MAX_WINDOW_LENGTH = 5000


def _status_or_404(runtime: DataAccessRuntime, spec_key: str) -> RefreshStatusResponse:
    try:
        return RefreshStatusResponse.from_status(runtime.status(spec_key))
    except UnknownQueryError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.get("", response_model=list[QuerySummaryResponse])
def list_queries(runtime: DataAccessRuntime = Depends(get_runtime)) -> list[QuerySummaryResponse]:
    summaries: list[QuerySummaryResponse] = []
    for spec_key in runtime.scheduler.registered_keys():
        try:
            spec = runtime.scheduler.spec_for(spec_key)
            refresh_status = RefreshStatusResponse.from_status(runtime.status(spec_key))
        except UnknownQueryError:
            continue
        summaries.append(
            QuerySummaryResponse(
                spec_key=spec_key,
                label=spec.label,
                entity=spec.entity,
                fields=list(spec.fields),
                status=refresh_status,
            )
        )
    return summaries


@router.get("/{spec_key}/status", response_model=RefreshStatusResponse)
def get_query_status(
    spec_key: str,
    runtime: DataAccessRuntime = Depends(get_runtime),
) -> RefreshStatusResponse:
    return _status_or_404(runtime, spec_key)


@router.get("/{spec_key}/window", response_model=WindowResponse)
def get_query_window(
    spec_key: str,
    offset: int = Query(0, ge=0),
    length: int = Query(100, ge=0, le=MAX_WINDOW_LENGTH),
    runtime: DataAccessRuntime = Depends(get_runtime),
) -> WindowResponse:
    """
    Return rows ``[offset, offset + length)`` of the latest result set.

    An empty row list with ``total_rows=0`` means no result has been
    accepted yet (or it was evicted after going unwatched).
    """

    _status_or_404(runtime, spec_key)
    result_set, rows = runtime.provider.read_window(spec_key, offset, length)
    return WindowResponse(
        spec_key=spec_key,
        offset=offset,
        length=len(rows),
        total_rows=len(result_set) if result_set is not None else 0,
        fetched_at=result_set.fetched_at if result_set is not None else None,
        sequence=result_set.sequence if result_set is not None else None,
        rows=[dict(row) for row in rows],
    )


@router.post("/{spec_key}/refresh", status_code=status.HTTP_202_ACCEPTED, response_model=RefreshStatusResponse)
def refresh_query(
    spec_key: str,
    runtime: DataAccessRuntime = Depends(get_runtime),
) -> RefreshStatusResponse:
    try:
        runtime.scheduler.refresh_now(spec_key)
    except UnknownQueryError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    logger.info("Manual refresh requested spec_key=%s", spec_key)
    return _status_or_404(runtime, spec_key)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=QuerySummaryResponse)
def register_query(
    payload: QueryDefinitionRequest,
    runtime: DataAccessRuntime = Depends(get_runtime),
) -> QuerySummaryResponse:
    """
    Register a query definition for periodic refresh.

    Registering a query whose shape is already registered returns the
    existing registration.
    """

    try:
        spec = parse_query_definition(payload.model_dump(exclude_none=True))
        spec_key = runtime.register(spec)
    except InvalidQuerySpec as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    registered = runtime.scheduler.spec_for(spec_key)
    return QuerySummaryResponse(
        spec_key=spec_key,
        label=registered.label,
        entity=registered.entity,
        fields=list(registered.fields),
        status=_status_or_404(runtime, spec_key),
    )


@router.delete("/{spec_key}", status_code=status.HTTP_204_NO_CONTENT)
def unregister_query(
    spec_key: str,
    runtime: DataAccessRuntime = Depends(get_runtime),
) -> None:
    if not runtime.unregister(spec_key):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Query '{spec_key}' is not registered.")
    logger.info("Query unregistered spec_key=%s", spec_key)
