"""
analytics_access/window/provider.py

Windowed access to the latest result set of each tracked query.

The provider is the only writer of result sets. Writes go through
``accept`` under one lock and are applied in strictly increasing request
sequence order: a response dispatched earlier than the one already applied
is dropped. Window reads slice in-memory state and never touch the network.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator

from analytics_access.domain.models import FetchSuccess, ResultSet, Row
from analytics_access.logging_utils import log_event

logger = logging.getLogger(__name__)

_CLOSED = object()


@dataclass(frozen=True)
class ResultSetUpdate:
    """
    Notification that a new result set was accepted for a query.
    """

    spec_key: str
    sequence: int
    fetched_at: datetime
    row_count: int


class UpdateStream:
    """
    Stream of ``ResultSetUpdate`` notifications for one query.
    """

    def __init__(self, spec_key: str, on_close: Callable[["UpdateStream"], None]) -> None:
        self.spec_key = spec_key
        self._queue: queue.Queue[object] = queue.Queue()
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, timeout: float | None = None) -> ResultSetUpdate | None:
        """
        Next update, or None on timeout or once the stream is closed.
        """

        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            self._queue.put(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put(_CLOSED)
        self._on_close(self)

    def _publish(self, update: ResultSetUpdate) -> None:
        if not self._closed:
            self._queue.put(update)

    def __iter__(self) -> Iterator[ResultSetUpdate]:
        while True:
            item = self._queue.get()
            if item is _CLOSED:
                return
            yield item  # type: ignore[misc]

    def __enter__(self) -> "UpdateStream":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


@dataclass
class _SpecState:
    last_requested: float
    result: ResultSet | None = None
    accepted_sequence: int = 0


class WindowedDataProvider:
    """
    Holds one result set per tracked query and serves slices of it.
    """

    def __init__(self, *, idle_seconds: float = 300.0, clock: Callable[[], float] | None = None) -> None:
        self._idle_seconds = idle_seconds
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._states: dict[str, _SpecState] = {}
        self._streams: dict[str, list[UpdateStream]] = {}

    def track(self, spec_key: str) -> None:
        with self._lock:
            if spec_key not in self._states:
                self._states[spec_key] = _SpecState(last_requested=self._clock())

    def forget(self, spec_key: str) -> None:
        """
        Drop all state for a query. Later results for it are ignored.
        """

        with self._lock:
            self._states.pop(spec_key, None)
            streams = self._streams.pop(spec_key, [])
        for stream in streams:
            stream.close()

    def is_tracked(self, spec_key: str) -> bool:
        with self._lock:
            return spec_key in self._states

    def accept(self, spec_key: str, sequence: int, result: FetchSuccess) -> bool:
        """
        Replace the result set for ``spec_key`` if ``sequence`` is newer.

        Returns True when the result was applied. A query nobody has read
        or subscribed to within the idle window only advances its sequence;
        its rows are retained again after the next window read.
        """

        with self._lock:
            state = self._states.get(spec_key)
            if state is None:
                log_event(logger, logging.INFO, "result_dropped_untracked", spec_key=spec_key, sequence=sequence)
                return False
            if sequence <= state.accepted_sequence:
                log_event(
                    logger,
                    logging.INFO,
                    "result_dropped_stale",
                    spec_key=spec_key,
                    sequence=sequence,
                    accepted_sequence=state.accepted_sequence,
                )
                return False

            streams = list(self._streams.get(spec_key, ()))
            if not streams and self._clock() - state.last_requested >= self._idle_seconds:
                # Unwatched: record the sequence but keep the rows out of memory
                # until the next window read.
                state.result = None
                log_event(logger, logging.INFO, "result_not_retained_idle", spec_key=spec_key, sequence=sequence)
            else:
                state.result = ResultSet(
                    spec_key=spec_key,
                    rows=result.rows,
                    fetched_at=result.fetched_at,
                    sequence=sequence,
                )
            state.accepted_sequence = sequence

        update = ResultSetUpdate(
            spec_key=spec_key,
            sequence=sequence,
            fetched_at=result.fetched_at,
            row_count=len(result.rows),
        )
        for stream in streams:
            stream._publish(update)
        return True

    def get_window(self, spec_key: str, offset: int, length: int) -> tuple[Row, ...]:
        """
        Return rows ``[offset, offset + length)`` of the current result set.
        """

        _, rows = self.read_window(spec_key, offset, length)
        return rows

    def read_window(self, spec_key: str, offset: int, length: int) -> tuple[ResultSet | None, tuple[Row, ...]]:
        """
        Like ``get_window`` but also returns the result set the slice came from.
        """

        if offset < 0 or length < 0:
            raise ValueError("Window offset and length must be non-negative.")
        with self._lock:
            state = self._states.get(spec_key)
            if state is None:
                return None, ()
            state.last_requested = self._clock()
            result = state.result
        if result is None:
            return None, ()
        return result, result.rows[offset : offset + length]

    def snapshot(self, spec_key: str) -> ResultSet | None:
        with self._lock:
            state = self._states.get(spec_key)
            return state.result if state is not None else None

    def on_updated(self, spec_key: str) -> UpdateStream:
        """
        Subscribe to accepted replacements for ``spec_key``.
        """

        stream = UpdateStream(spec_key, on_close=self._unsubscribe)
        with self._lock:
            self._streams.setdefault(spec_key, []).append(stream)
        return stream

    def evict_idle(self) -> list[str]:
        """
        Discard result sets nobody has looked at within the idle window.

        Queries with an open update stream count as being watched.
        """

        now = self._clock()
        evicted: list[str] = []
        with self._lock:
            for spec_key, state in self._states.items():
                if state.result is None or self._streams.get(spec_key):
                    continue
                if now - state.last_requested >= self._idle_seconds:
                    state.result = None
                    evicted.append(spec_key)
        for spec_key in evicted:
            log_event(logger, logging.INFO, "result_set_evicted", spec_key=spec_key)
        return evicted

    def _unsubscribe(self, stream: UpdateStream) -> None:
        with self._lock:
            streams = self._streams.get(stream.spec_key)
            if streams and stream in streams:
                streams.remove(stream)
                if not streams:
                    del self._streams[stream.spec_key]
