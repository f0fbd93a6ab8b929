"""
analytics_access/fetch/engine.py

Retrying HTTP fetch against the analytics service.

Every outcome comes back as a typed result. Transient failures (network
errors, 429, 5xx) are retried with capped, jittered exponential backoff;
everything else returns on the first attempt. A cancelled fetch returns
``None`` and never a partial row set.
"""

from __future__ import annotations

import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlparse

import requests

from analytics_access.config import FetchSettings
from analytics_access.domain.models import FailureKind, FetchFailure, FetchResult, FetchSuccess, Row
from analytics_access.fetch.cancellation import CancelToken
from analytics_access.logging_utils import log_event, scrub_secrets
from analytics_access.query.builder import RequestDescriptor

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
AUTH_STATUS_CODES = {401, 403}

BackoffWait = Callable[[CancelToken, float], bool]


def _wait_on_token(token: CancelToken, seconds: float) -> bool:
    return token.wait(seconds)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _Page:
    rows: tuple[Row, ...]
    next_link: str | None


class FetchEngine:
    """
    Executes request descriptors with timeout, retry and cancellation.
    """

    def __init__(
        self,
        *,
        settings: FetchSettings,
        session: requests.Session | None = None,
        rng: random.Random | None = None,
        backoff_wait: BackoffWait | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        self._rng = rng or random.Random()
        self._backoff_wait = backoff_wait or _wait_on_token
        self._clock = clock or _utcnow
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_workers,
            thread_name_prefix="analytics-fetch",
        )

    def execute(self, descriptor: RequestDescriptor, cancel: CancelToken | None = None) -> FetchResult | None:
        """
        Fetch every page for ``descriptor``.

        Returns ``None`` when ``cancel`` fires before the fetch completes.
        """

        token = cancel or CancelToken()
        secrets = descriptor.secret_values()
        headers = descriptor.header_map()

        rows: list[Row] = []
        url = descriptor.url
        pages = 0
        truncated = False
        while True:
            outcome = self._fetch_page(url=url, headers=headers, token=token, secrets=secrets, spec_key=descriptor.spec_key)
            if outcome is None:
                log_event(logger, logging.INFO, "fetch_cancelled", spec_key=descriptor.spec_key, reason=token.reason)
                return None
            if isinstance(outcome, FetchFailure):
                return outcome

            pages += 1
            rows.extend(outcome.rows)
            if outcome.next_link is None:
                break
            if pages >= self._settings.max_pages:
                truncated = True
                log_event(
                    logger,
                    logging.WARNING,
                    "fetch_truncated",
                    spec_key=descriptor.spec_key,
                    pages=pages,
                    rows=len(rows),
                )
                break
            if not _same_origin(outcome.next_link, descriptor.url):
                return FetchFailure(
                    kind=FailureKind.PERMANENT,
                    retryable=False,
                    message="Server paging link points outside the analytics service.",
                )
            url = outcome.next_link

        return FetchSuccess(rows=tuple(rows), fetched_at=self._clock(), pages=pages, truncated=truncated)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._session.close()

    def backoff_delay(self, attempt: int, previous_delay: float, retry_after_seconds: float | None = None) -> float:
        """
        Delay before retry number ``attempt + 1``.

        Delays never decrease between attempts and never exceed the cap
        plus jitter.
        """

        settings = self._settings
        base = min(
            settings.backoff_max_seconds,
            settings.backoff_initial_seconds * (settings.backoff_multiplier**attempt),
        )
        delay = base * (1.0 + self._rng.uniform(-settings.jitter_fraction, settings.jitter_fraction))
        if retry_after_seconds is not None:
            delay = max(delay, min(settings.backoff_max_seconds, retry_after_seconds))
        return max(previous_delay, delay)

    def _fetch_page(
        self,
        *,
        url: str,
        headers: dict[str, str],
        token: CancelToken,
        secrets: tuple[str, ...],
        spec_key: str,
    ) -> _Page | FetchFailure | None:
        max_retries = self._settings.max_retries
        previous_delay = 0.0
        attempt = 0

        while True:
            if token.cancelled:
                return None

            outcome = self._attempt(url=url, headers=headers, token=token, secrets=secrets)
            if outcome is None:
                return None
            if isinstance(outcome, _Page):
                return outcome

            failure = replace(outcome, attempts=attempt + 1)
            if not failure.retryable:
                log_event(
                    logger,
                    logging.ERROR,
                    "fetch_failed",
                    spec_key=spec_key,
                    kind=failure.kind.value,
                    status=failure.status_code,
                    error=failure.message,
                )
                return failure

            if attempt >= max_retries:
                return self._exhausted(failure, spec_key=spec_key)

            delay = self.backoff_delay(attempt, previous_delay, failure.retry_after_seconds)
            previous_delay = delay
            log_event(
                logger,
                logging.WARNING,
                "fetch_retry",
                spec_key=spec_key,
                attempt=attempt + 1,
                max_retries=max_retries,
                wait_seconds=round(delay, 3),
                status=failure.status_code,
                error=failure.message,
            )
            if self._backoff_wait(token, delay):
                return None
            attempt += 1

    def _exhausted(self, last_failure: FetchFailure, *, spec_key: str) -> FetchFailure:
        attempts = last_failure.attempts
        log_event(
            logger,
            logging.ERROR,
            "fetch_exhausted",
            spec_key=spec_key,
            attempts=attempts,
            error=last_failure.message,
        )
        return FetchFailure(
            kind=FailureKind.EXHAUSTED,
            retryable=False,
            message=f"Request failed after {attempts} attempts: {last_failure.message}",
            status_code=last_failure.status_code,
            attempts=attempts,
        )

    def _attempt(
        self,
        *,
        url: str,
        headers: dict[str, str],
        token: CancelToken,
        secrets: tuple[str, ...],
    ) -> _Page | FetchFailure | None:
        timeout_seconds = self._settings.timeout_seconds
        finished = threading.Event()
        future = self._executor.submit(self._session.get, url, headers=headers, timeout=timeout_seconds)
        future.add_done_callback(lambda _future: finished.set())
        remove_callback = token.add_callback(finished.set)
        try:
            completed = finished.wait(timeout_seconds)
        finally:
            remove_callback()

        if token.cancelled:
            future.cancel()
            return None
        if not completed:
            future.cancel()
            return FetchFailure(
                kind=FailureKind.TRANSIENT,
                retryable=True,
                message=f"No response within {timeout_seconds:.0f}s.",
            )

        try:
            response = future.result()
        except (requests.Timeout, requests.ConnectionError) as exc:
            return FetchFailure(
                kind=FailureKind.TRANSIENT,
                retryable=True,
                message=scrub_secrets(f"Network failure: {exc}", secrets),
            )
        except requests.RequestException as exc:
            return FetchFailure(
                kind=FailureKind.PERMANENT,
                retryable=False,
                message=scrub_secrets(f"Request could not be sent: {exc}", secrets),
            )
        return self._classify(response, secrets)

    def _classify(self, response: requests.Response, secrets: tuple[str, ...]) -> _Page | FetchFailure:
        status = response.status_code
        if 200 <= status < 300:
            return self._parse_envelope(response)

        detail = scrub_secrets(_error_detail(response), secrets)
        message = f"HTTP {status}: {detail}" if detail else f"HTTP {status}"
        if status in AUTH_STATUS_CODES:
            return FetchFailure(kind=FailureKind.AUTH_UNAVAILABLE, retryable=False, message=message, status_code=status)
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            return FetchFailure(
                kind=FailureKind.TRANSIENT,
                retryable=True,
                message=message,
                status_code=status,
                retry_after_seconds=_retry_after_seconds(response),
            )
        return FetchFailure(kind=FailureKind.PERMANENT, retryable=False, message=message, status_code=status)

    @staticmethod
    def _parse_envelope(response: requests.Response) -> _Page | FetchFailure:
        try:
            payload = response.json()
        except ValueError:
            return FetchFailure(
                kind=FailureKind.PERMANENT,
                retryable=False,
                message="Response body was not valid JSON.",
                status_code=response.status_code,
            )

        value = payload.get("value") if isinstance(payload, dict) else None
        if not isinstance(value, list) or not all(isinstance(row, dict) for row in value):
            return FetchFailure(
                kind=FailureKind.PERMANENT,
                retryable=False,
                message="Response envelope has no 'value' row array.",
                status_code=response.status_code,
            )

        next_link = payload.get("@odata.nextLink")
        return _Page(rows=tuple(value), next_link=next_link if isinstance(next_link, str) and next_link else None)


def _error_detail(response: requests.Response) -> str:
    try:
        payload: Any = response.json()
    except ValueError:
        return (response.text or "").strip()[:300]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])[:300]
        if payload.get("message"):
            return str(payload["message"])[:300]
    return ""


def _retry_after_seconds(response: requests.Response) -> float | None:
    raw = response.headers.get("Retry-After") if response.headers is not None else None
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def _same_origin(candidate: str, reference: str) -> bool:
    left = urlparse(candidate)
    right = urlparse(reference)
    return (left.scheme, left.netloc.lower()) == (right.scheme, right.netloc.lower())
