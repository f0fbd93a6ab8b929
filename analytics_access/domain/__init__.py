"""
analytics_access/domain package marker.
"""

from analytics_access.domain.models import (
    Credential,
    FailureKind,
    FetchFailure,
    FetchResult,
    FetchSuccess,
    HostContext,
    HostMode,
    RefreshPolicy,
    ResultSet,
    Row,
    UserDescriptor,
)

__all__ = [
    "Credential",
    "FailureKind",
    "FetchFailure",
    "FetchResult",
    "FetchSuccess",
    "HostContext",
    "HostMode",
    "RefreshPolicy",
    "ResultSet",
    "Row",
    "UserDescriptor",
]
