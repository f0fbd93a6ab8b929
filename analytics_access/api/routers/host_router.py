"""
Host mode and current user endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from analytics_access.api.dependencies import get_runtime
from analytics_access.errors import AuthUnavailable
from analytics_access.runtime import DataAccessRuntime
from analytics_access.schemas.window import HostResponse

router = APIRouter(tags=["host"])


@router.get("/host", response_model=HostResponse)
def get_host(runtime: DataAccessRuntime = Depends(get_runtime)) -> HostResponse:
    context = runtime.detection.context
    try:
        user = runtime.current_user()
        runtime.identity.issue_credential()
    except AuthUnavailable:
        return HostResponse(
            mode=runtime.mode,
            host_name=context.host_name if context is not None else None,
            auth_available=False,
        )
    return HostResponse(
        mode=runtime.mode,
        host_name=context.host_name if context is not None else None,
        user_display_name=user.display_name,
        auth_available=True,
    )
