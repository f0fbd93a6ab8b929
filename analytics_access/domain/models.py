"""
analytics_access/domain/models.py

Value types shared by every stage of the data access pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Union

Row = Mapping[str, Any]


class HostMode(str, Enum):
    """
    Which host the dashboard is running inside.
    """

    EMBEDDED = "embedded"
    STANDALONE = "standalone"


@dataclass(frozen=True)
class UserDescriptor:
    """
    The user on whose behalf analytics requests are issued.
    """

    display_name: str
    user_id: str | None = None
    unique_name: str | None = None


@dataclass(frozen=True)
class HostContext:
    """
    Context object returned by a successful host probe.
    """

    host_name: str
    user: UserDescriptor
    analytics_base_url: str | None = None


@dataclass(frozen=True)
class Credential:
    """
    Authorization value for outbound requests.

    The value is opaque and must never reach a log line, so it is excluded
    from ``repr``.
    """

    scheme: str
    value: str = field(repr=False)
    expires_at: datetime | None = None

    def authorization_header(self) -> str:
        return f"{self.scheme} {self.value}"


class FailureKind(str, Enum):
    """
    Classification of a failed fetch.
    """

    AUTH_UNAVAILABLE = "auth_unavailable"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class FetchSuccess:
    """
    Rows returned by one completed fetch.
    """

    rows: tuple[Row, ...]
    fetched_at: datetime
    pages: int = 1
    truncated: bool = False


@dataclass(frozen=True)
class FetchFailure:
    """
    Classified fetch failure. Messages are scrubbed of credential material.
    """

    kind: FailureKind
    retryable: bool
    message: str
    status_code: int | None = None
    attempts: int = 1
    retry_after_seconds: float | None = None


FetchResult = Union[FetchSuccess, FetchFailure]


@dataclass(frozen=True)
class ResultSet:
    """
    Latest accepted rows for one query spec.

    Instances are never modified; a refresh replaces the whole object.
    """

    spec_key: str
    rows: tuple[Row, ...]
    fetched_at: datetime
    sequence: int

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class RefreshPolicy:
    """
    Polling cadence for one registered query.
    """

    base_interval_seconds: float = 30.0
    max_interval_seconds: float = 600.0
    backoff_multiplier: float = 2.0
    jitter_fraction: float = 0.1

    def next_interval(self, current_seconds: float, *, succeeded: bool) -> float:
        """
        Interval to wait before the next tick after one outcome.
        """

        if succeeded:
            return self.base_interval_seconds
        return min(self.max_interval_seconds, current_seconds * self.backoff_multiplier)

    def jitter_seconds(self, interval_seconds: float) -> float:
        return interval_seconds * self.jitter_fraction
