"""
analytics_access/api/dependencies.py

Shared FastAPI dependencies.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from analytics_access.runtime import DataAccessRuntime


def get_runtime(request: Request) -> DataAccessRuntime:
    """
    Return the data access runtime attached to the application.
    """

    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Data access runtime is not initialised.",
        )
    return runtime
