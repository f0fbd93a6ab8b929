"""
Retrying fetch engine and cancellation signal.
"""

from analytics_access.fetch.cancellation import CancelToken
from analytics_access.fetch.engine import AUTH_STATUS_CODES, RETRYABLE_STATUS_CODES, FetchEngine

__all__ = [
    "AUTH_STATUS_CODES",
    "CancelToken",
    "FetchEngine",
    "RETRYABLE_STATUS_CODES",
]
