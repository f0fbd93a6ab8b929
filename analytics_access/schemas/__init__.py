"""
analytics_access/schemas package marker.
"""

from analytics_access.schemas.window import (
    HostResponse,
    QueryDefinitionRequest,
    QuerySummaryResponse,
    RefreshStatusResponse,
    WindowResponse,
)

__all__ = [
    "HostResponse",
    "QueryDefinitionRequest",
    "QuerySummaryResponse",
    "RefreshStatusResponse",
    "WindowResponse",
]
