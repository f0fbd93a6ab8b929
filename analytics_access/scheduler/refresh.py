"""
analytics_access/scheduler/refresh.py

APScheduler-based periodic refresh of registered queries.

Lifecycle per registered query
------------------------------
  IDLE -> FETCHING -> IDLE       on success (interval resets to the base)
  IDLE -> FETCHING -> BACKOFF    on failure (interval grows, capped at max)

Each query is one interval job with ``max_instances=1`` and
``coalesce=True``: a tick that fires while the previous fetch for the same
query is still running is skipped, never queued. Polling continues until
``unregister``; there is no automatic give-up.

Every fetch is stamped with a sequence number at dispatch. Results are
handed to the ``WindowedDataProvider``, which only applies a result newer
than the one it already holds.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from analytics_access.config import SchedulerSettings
from analytics_access.domain.models import FailureKind, FetchFailure, FetchResult, FetchSuccess
from analytics_access.errors import AuthUnavailable, UnknownQueryError
from analytics_access.fetch.cancellation import CancelToken
from analytics_access.fetch.engine import FetchEngine
from analytics_access.host.identity import IdentityProvider
from analytics_access.logging_utils import log_event, scrub_secrets
from analytics_access.query.builder import QueryBuilder, QuerySpec
from analytics_access.window.provider import WindowedDataProvider

logger = logging.getLogger(__name__)

_HOUSEKEEPING_JOB_ID = "window_housekeeping"
_TICK_BUDGET_REASON = "tick_budget"


class RefreshPhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    BACKOFF = "backoff"


@dataclass(frozen=True)
class RefreshStatus:
    """
    What the Renderer needs to show freshness for one query.
    """

    spec_key: str
    label: str
    phase: RefreshPhase
    consecutive_failures: int
    interval_seconds: float
    last_success_at: datetime | None
    last_failure_kind: FailureKind | None
    last_failure_message: str | None

    @property
    def stale(self) -> bool:
        return self.consecutive_failures > 0

    @property
    def auth_required(self) -> bool:
        return self.stale and self.last_failure_kind is FailureKind.AUTH_UNAVAILABLE


@dataclass
class _Registration:
    spec: QuerySpec
    job_id: str
    interval_seconds: float
    phase: RefreshPhase = RefreshPhase.IDLE
    consecutive_failures: int = 0
    token: CancelToken | None = None
    last_success_at: datetime | None = None
    last_failure: FetchFailure | None = None


class RefreshScheduler:
    """
    Drives periodic re-fetch of registered queries.

    All per-query refresh state lives in ``_registrations`` and is only
    touched under ``_lock``.
    """

    def __init__(
        self,
        *,
        builder: QueryBuilder,
        identity: IdentityProvider,
        engine: FetchEngine,
        provider: WindowedDataProvider,
        settings: SchedulerSettings,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._builder = builder
        self._identity = identity
        self._engine = engine
        self._provider = provider
        self._settings = settings
        self._policy = settings.policy
        self._scheduler = scheduler or BackgroundScheduler(timezone="UTC")
        self._lock = threading.Lock()
        self._registrations: dict[str, _Registration] = {}
        self._sequence = itertools.count(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Add the housekeeping job and start the underlying scheduler.
        """

        self._scheduler.add_job(
            self._provider.evict_idle,
            trigger=IntervalTrigger(seconds=self._settings.housekeeping_interval_seconds, timezone="UTC"),
            id=_HOUSEKEEPING_JOB_ID,
            name="Evict idle result sets",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        log_event(logger, logging.INFO, "refresh_scheduler_started", registered=len(self._registrations))

    def shutdown(self) -> None:
        """
        Cancel every in-flight fetch and stop scheduling.
        """

        with self._lock:
            tokens = [reg.token for reg in self._registrations.values() if reg.token is not None]
        for token in tokens:
            token.cancel(reason="shutdown")
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        log_event(logger, logging.INFO, "refresh_scheduler_stopped", cancelled_fetches=len(tokens))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, spec: QuerySpec, *, run_immediately: bool = True) -> str:
        """
        Start polling ``spec``. Returns its key.

        Raises ``InvalidQuerySpec`` before anything is scheduled if the spec
        can never be built.
        """

        self._builder.validate(spec)
        key = spec.key
        with self._lock:
            if key in self._registrations:
                return key
            registration = _Registration(
                spec=spec,
                job_id=f"refresh:{key}",
                interval_seconds=self._policy.base_interval_seconds,
            )
            self._registrations[key] = registration

        self._provider.track(key)
        job_kwargs: dict[str, Any] = {}
        if run_immediately:
            job_kwargs["next_run_time"] = datetime.now(timezone.utc)
        self._scheduler.add_job(
            self.run_tick,
            trigger=self._trigger(registration.interval_seconds),
            args=[key],
            id=registration.job_id,
            name=f"Refresh {spec.label}",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **job_kwargs,
        )
        log_event(
            logger,
            logging.INFO,
            "query_registered",
            spec_key=key,
            label=spec.label,
            interval_seconds=registration.interval_seconds,
        )
        return key

    def unregister(self, spec_or_key: QuerySpec | str) -> bool:
        """
        Stop polling a query and cancel its in-flight fetch, if any.
        """

        key = spec_or_key.key if isinstance(spec_or_key, QuerySpec) else spec_or_key
        with self._lock:
            registration = self._registrations.pop(key, None)
        if registration is None:
            return False

        if registration.token is not None:
            registration.token.cancel(reason="unregistered")
        try:
            self._scheduler.remove_job(registration.job_id)
        except JobLookupError:
            pass
        self._provider.forget(key)
        log_event(logger, logging.INFO, "query_unregistered", spec_key=key)
        return True

    def refresh_now(self, spec_key: str) -> None:
        """
        Ask for an out-of-band tick. Skipped if a fetch is already running.
        """

        registration = self._get(spec_key)
        try:
            self._scheduler.modify_job(registration.job_id, next_run_time=datetime.now(timezone.utc))
        except JobLookupError as exc:
            raise UnknownQueryError(f"Query '{spec_key}' is not registered.") from exc

    # ------------------------------------------------------------------
    # Renderer-facing reads
    # ------------------------------------------------------------------

    def registered_keys(self) -> list[str]:
        with self._lock:
            return list(self._registrations)

    def spec_for(self, spec_key: str) -> QuerySpec:
        return self._get(spec_key).spec

    def failure_count(self, spec_key: str) -> int:
        return self._get(spec_key).consecutive_failures

    def status(self, spec_key: str) -> RefreshStatus:
        with self._lock:
            registration = self._registrations.get(spec_key)
            if registration is None:
                raise UnknownQueryError(f"Query '{spec_key}' is not registered.")
            failure = registration.last_failure
            return RefreshStatus(
                spec_key=spec_key,
                label=registration.spec.label,
                phase=registration.phase,
                consecutive_failures=registration.consecutive_failures,
                interval_seconds=registration.interval_seconds,
                last_success_at=registration.last_success_at,
                last_failure_kind=failure.kind if failure is not None else None,
                last_failure_message=failure.message if failure is not None else None,
            )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def run_tick(self, spec_key: str) -> FetchResult | None:
        """
        One refresh of ``spec_key``: build, fetch, hand off, adapt interval.

        Returns the fetch outcome, or None when the tick was skipped or
        cancelled.
        """

        with self._lock:
            registration = self._registrations.get(spec_key)
            if registration is None:
                return None
            if registration.phase is RefreshPhase.FETCHING:
                log_event(logger, logging.INFO, "refresh_tick_skipped", spec_key=spec_key, reason="in_flight")
                return None
            registration.phase = RefreshPhase.FETCHING
            token = CancelToken()
            registration.token = token
            sequence = next(self._sequence)

        budget_timer = token.cancel_after(self._settings.tick_budget_seconds, reason=_TICK_BUDGET_REASON)
        try:
            result = self._fetch(registration.spec, token)
        except Exception as exc:  # noqa: BLE001
            result = FetchFailure(
                kind=FailureKind.PERMANENT,
                retryable=False,
                message=scrub_secrets(f"Refresh failed unexpectedly: {exc}"),
            )
        finally:
            budget_timer.cancel()

        if result is None and token.reason == _TICK_BUDGET_REASON:
            result = FetchFailure(
                kind=FailureKind.EXHAUSTED,
                retryable=False,
                message=f"Refresh exceeded its {self._settings.tick_budget_seconds:.0f}s budget.",
            )
        return self._complete(spec_key, registration, token, sequence, result)

    def _fetch(self, spec: QuerySpec, token: CancelToken) -> FetchResult | None:
        try:
            credential = self._identity.issue_credential()
        except AuthUnavailable as exc:
            return FetchFailure(kind=FailureKind.AUTH_UNAVAILABLE, retryable=False, message=str(exc))
        if token.cancelled:
            return None
        descriptor = self._builder.build(spec, credential)
        return self._engine.execute(descriptor, token)

    def _complete(
        self,
        spec_key: str,
        registration: _Registration,
        token: CancelToken,
        sequence: int,
        result: FetchResult | None,
    ) -> FetchResult | None:
        with self._lock:
            if self._registrations.get(spec_key) is not registration:
                return None
            registration.token = None
            if result is None:
                registration.phase = RefreshPhase.IDLE
                return None

            previous_interval = registration.interval_seconds
            if isinstance(result, FetchSuccess):
                applied = self._provider.accept(spec_key, sequence, result)
                registration.consecutive_failures = 0
                registration.last_failure = None
                registration.last_success_at = result.fetched_at
                registration.phase = RefreshPhase.IDLE
                registration.interval_seconds = self._policy.next_interval(previous_interval, succeeded=True)
            else:
                applied = False
                registration.consecutive_failures += 1
                registration.last_failure = result
                registration.phase = RefreshPhase.BACKOFF
                registration.interval_seconds = self._policy.next_interval(previous_interval, succeeded=False)
            interval = registration.interval_seconds
            failures = registration.consecutive_failures

        if interval != previous_interval:
            self._reschedule(registration.job_id, interval)

        if isinstance(result, FetchSuccess):
            log_event(
                logger,
                logging.INFO,
                "refresh_succeeded",
                spec_key=spec_key,
                sequence=sequence,
                rows=len(result.rows),
                applied=applied,
                next_interval_seconds=interval,
            )
        else:
            log_event(
                logger,
                logging.WARNING,
                "refresh_failed",
                spec_key=spec_key,
                sequence=sequence,
                kind=result.kind.value,
                consecutive_failures=failures,
                next_interval_seconds=interval,
                error=result.message,
            )
        return result

    def _reschedule(self, job_id: str, interval_seconds: float) -> None:
        try:
            self._scheduler.reschedule_job(job_id, trigger=self._trigger(interval_seconds))
        except JobLookupError:
            pass

    def _trigger(self, interval_seconds: float) -> IntervalTrigger:
        jitter = self._policy.jitter_seconds(interval_seconds)
        return IntervalTrigger(
            seconds=interval_seconds,
            jitter=jitter if jitter > 0 else None,
            timezone="UTC",
        )

    def _get(self, spec_key: str) -> _Registration:
        with self._lock:
            registration = self._registrations.get(spec_key)
        if registration is None:
            raise UnknownQueryError(f"Query '{spec_key}' is not registered.")
        return registration
