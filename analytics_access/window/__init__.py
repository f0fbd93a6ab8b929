"""
Windowed delivery of result sets to the Renderer.
"""

from analytics_access.window.provider import ResultSetUpdate, UpdateStream, WindowedDataProvider

__all__ = ["ResultSetUpdate", "UpdateStream", "WindowedDataProvider"]
