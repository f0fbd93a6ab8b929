"""
analytics_access/api/routers package marker.
"""

from analytics_access.api.routers.host_router import router as host_router
from analytics_access.api.routers.window_router import router as window_router

__all__ = [
    "host_router",
    "window_router",
]
