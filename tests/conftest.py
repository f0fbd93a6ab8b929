"""
Shared fakes for the data access tests.

Nothing here touches the network: HTTP sessions, the host bridge and
APScheduler are replaced by small scripted stand-ins.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest
import requests
from apscheduler.jobstores.base import JobLookupError

from analytics_access.config import FetchSettings, SchedulerSettings
from analytics_access.domain.models import (
    Credential,
    FetchResult,
    FetchSuccess,
    HostContext,
    RefreshPolicy,
    UserDescriptor,
)
from analytics_access.errors import AuthUnavailable
from analytics_access.fetch.cancellation import CancelToken
from analytics_access.host.bridge import HostBridgeError, HostToken
from analytics_access.query.builder import QueryBuilder, QuerySpec, RequestDescriptor

BASE_URL = "https://analytics.example.com/acme/web/_odata/v4.0-preview"

_INVALID_JSON = object()


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        payload: Any = None,
        *,
        headers: dict[str, str] | None = None,
        text: str = "",
        invalid_json: bool = False,
    ) -> None:
        self.status_code = status_code
        self._payload = _INVALID_JSON if invalid_json else payload
        self.headers = headers or {}
        self.text = text

    def json(self) -> Any:
        if self._payload is _INVALID_JSON:
            raise ValueError("not json")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """
    Scripted stand-in for ``requests.Session``.

    Each script item is a ``FakeResponse``, an exception instance to raise,
    or a callable taking the URL and returning either.
    """

    def __init__(self, script: list[Any] | None = None) -> None:
        self.script = list(script or [])
        self.calls: list[dict[str, Any]] = []
        self.closed = False
        self._lock = threading.Lock()

    def get(self, url: str, headers: dict[str, str] | None = None, timeout: float | None = None) -> FakeResponse:
        with self._lock:
            self.calls.append({"url": url, "headers": dict(headers or {}), "timeout": timeout})
            if not self.script:
                raise AssertionError(f"Unexpected request to {url}")
            item = self.script.pop(0)
        if callable(item) and not isinstance(item, FakeResponse):
            item = item(url)
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        self.closed = True


class FakeBridge:
    """
    Host bridge with configurable context and token behaviour.
    """

    def __init__(
        self,
        *,
        context: HostContext | None = None,
        context_error: Exception | None = None,
        context_delay: threading.Event | None = None,
        token: str | None = "host-token",
    ) -> None:
        self.context = context or HostContext(
            host_name="work-tracker",
            user=UserDescriptor(display_name="Dana Reviewer", user_id="u-1"),
            analytics_base_url=BASE_URL,
        )
        self.context_error = context_error
        self.context_delay = context_delay
        self.token = token
        self.context_calls = 0
        self.token_calls = 0
        self.closed = False

    def get_context(self, *, timeout_seconds: float) -> HostContext:
        self.context_calls += 1
        if self.context_delay is not None:
            self.context_delay.wait(5.0)
        if self.context_error is not None:
            raise self.context_error
        return self.context

    def get_access_token(self, *, timeout_seconds: float) -> HostToken:
        self.token_calls += 1
        if self.token is None:
            raise HostBridgeError("token refused")
        return HostToken(token=f"{self.token}-{self.token_calls}")

    def close(self) -> None:
        self.closed = True


class FakeJob:
    def __init__(self, func: Callable[..., Any], trigger: Any, args: list[Any], kwargs: dict[str, Any]) -> None:
        self.func = func
        self.trigger = trigger
        self.args = args
        self.kwargs = kwargs


class FakeAPScheduler:
    """
    Records APScheduler calls instead of running jobs on threads.
    """

    def __init__(self) -> None:
        self.jobs: dict[str, FakeJob] = {}
        self.reschedules: list[tuple[str, float]] = []
        self.modified: list[str] = []
        self.running = False

    def add_job(self, func: Callable[..., Any], trigger: Any = None, args: list[Any] | None = None, id: str = "", **kwargs: Any) -> FakeJob:
        job = FakeJob(func, trigger, list(args or []), kwargs)
        self.jobs[id] = job
        return job

    def reschedule_job(self, job_id: str, trigger: Any = None) -> None:
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        self.jobs[job_id].trigger = trigger
        self.reschedules.append((job_id, trigger.interval.total_seconds()))

    def modify_job(self, job_id: str, **changes: Any) -> None:
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        self.modified.append(job_id)

    def remove_job(self, job_id: str) -> None:
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        del self.jobs[job_id]

    def start(self) -> None:
        self.running = True

    def shutdown(self, wait: bool = True) -> None:
        self.running = False

    def interval_of(self, job_id: str) -> float:
        return self.jobs[job_id].trigger.interval.total_seconds()


class StaticIdentity:
    def __init__(self, credential: Credential | None = None, *, unavailable: bool = False) -> None:
        self.credential = credential or Credential(scheme="Bearer", value="secret-token")
        self.unavailable = unavailable
        self.calls = 0

    def issue_credential(self) -> Credential:
        self.calls += 1
        if self.unavailable:
            raise AuthUnavailable("no credential")
        return self.credential

    def describe_current_user(self) -> UserDescriptor:
        return UserDescriptor(display_name="Test User")


class ScriptedEngine:
    """
    Fetch engine stand-in returning scripted results per call.

    A callable script item receives ``(descriptor, token)`` and its return
    value is used as the result.
    """

    def __init__(self, script: list[Any] | None = None) -> None:
        self.script = list(script or [])
        self.descriptors: list[RequestDescriptor] = []
        self.closed = False

    def execute(self, descriptor: RequestDescriptor, cancel: CancelToken | None = None) -> FetchResult | None:
        self.descriptors.append(descriptor)
        item = self.script.pop(0)
        if callable(item):
            return item(descriptor, cancel)
        return item

    def close(self) -> None:
        self.closed = True


def make_rows(count: int, *, start: int = 0) -> tuple[dict[str, Any], ...]:
    return tuple({"WorkItemId": index, "Title": f"Item {index}"} for index in range(start, start + count))


def make_success(count: int = 3, *, minutes: int = 0) -> FetchSuccess:
    fetched_at = datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes)
    return FetchSuccess(rows=make_rows(count), fetched_at=fetched_at)


@pytest.fixture()
def builder() -> QueryBuilder:
    return QueryBuilder(base_url=BASE_URL)


@pytest.fixture()
def work_items_spec() -> QuerySpec:
    return QuerySpec(
        entity="WorkItems",
        fields=("WorkItemId", "Title", "State"),
        order_by=("ChangedDate desc",),
        name="recent",
    )


@pytest.fixture()
def fetch_settings() -> FetchSettings:
    return FetchSettings(
        timeout_seconds=2.0,
        max_retries=3,
        backoff_initial_seconds=1.0,
        backoff_multiplier=2.0,
        backoff_max_seconds=16.0,
        jitter_fraction=0.2,
        max_pages=3,
        max_workers=4,
    )


@pytest.fixture()
def scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(
        policy=RefreshPolicy(
            base_interval_seconds=30.0,
            max_interval_seconds=120.0,
            backoff_multiplier=2.0,
            jitter_fraction=0.0,
        ),
        tick_budget_seconds=30.0,
    )
