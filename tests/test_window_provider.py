"""
tests/test_window_provider.py

Unit tests for WindowedDataProvider.

Coverage
--------
- Window slicing from in-memory state
- Discard-on-staleness under every arrival order
- Untracked and forgotten queries
- Update streams
- Idle eviction
"""

from __future__ import annotations

import itertools

import pytest

from analytics_access.domain.models import FetchSuccess
from analytics_access.window.provider import WindowedDataProvider

from conftest import make_rows, make_success


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------


class TestWindows:
    def test_window_is_a_slice_of_the_accepted_rows(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        provider.accept("q", 1, FetchSuccess(rows=make_rows(500), fetched_at=make_success().fetched_at))

        window = provider.get_window("q", 100, 50)

        assert len(window) == 50
        assert window[0]["WorkItemId"] == 100
        assert window[-1]["WorkItemId"] == 149

    def test_window_past_the_end_is_short_or_empty(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        provider.accept("q", 1, make_success(10))

        assert len(provider.get_window("q", 5, 100)) == 5
        assert provider.get_window("q", 50, 10) == ()

    def test_no_result_yet_returns_empty(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        assert provider.get_window("q", 0, 10) == ()
        assert provider.get_window("unknown", 0, 10) == ()

    @pytest.mark.parametrize(("offset", "length"), [(-1, 10), (0, -1)])
    def test_negative_arguments_are_rejected(self, offset: int, length: int) -> None:
        provider = WindowedDataProvider()
        with pytest.raises(ValueError):
            provider.get_window("q", offset, length)

    def test_read_window_returns_the_source_result_set(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        provider.accept("q", 4, make_success(20))

        result_set, rows = provider.read_window("q", 0, 5)

        assert result_set is not None
        assert result_set.sequence == 4
        assert len(result_set) == 20
        assert len(rows) == 5


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    @pytest.mark.parametrize("order", list(itertools.permutations([1, 2, 3, 4])))
    def test_newest_dispatch_wins_regardless_of_arrival(self, order: tuple[int, ...]) -> None:
        provider = WindowedDataProvider()
        provider.track("q")

        for sequence in order:
            provider.accept("q", sequence, make_success(sequence, minutes=sequence))

        snapshot = provider.snapshot("q")
        assert snapshot is not None
        assert snapshot.sequence == 4
        assert len(snapshot.rows) == 4

    def test_stale_result_is_reported_as_not_applied(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")

        assert provider.accept("q", 5, make_success(2)) is True
        assert provider.accept("q", 3, make_success(9)) is False
        assert provider.accept("q", 5, make_success(9)) is False
        assert len(provider.get_window("q", 0, 100)) == 2

    def test_untracked_results_are_dropped(self) -> None:
        provider = WindowedDataProvider()
        assert provider.accept("q", 1, make_success()) is False
        assert provider.snapshot("q") is None

    def test_forget_drops_state_and_later_results(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        provider.accept("q", 1, make_success())

        provider.forget("q")

        assert provider.is_tracked("q") is False
        assert provider.accept("q", 2, make_success()) is False
        assert provider.get_window("q", 0, 10) == ()


# ---------------------------------------------------------------------------
# Update streams
# ---------------------------------------------------------------------------


class TestUpdateStreams:
    def test_one_notification_per_applied_result(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        stream = provider.on_updated("q")

        provider.accept("q", 2, make_success(3))
        provider.accept("q", 1, make_success(7))

        update = stream.get(timeout=0.1)
        assert update is not None
        assert (update.spec_key, update.sequence, update.row_count) == ("q", 2, 3)
        assert stream.get(timeout=0.05) is None

    def test_forget_closes_streams(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        stream = provider.on_updated("q")

        provider.forget("q")

        assert stream.closed is True
        assert list(stream) == []

    def test_closed_stream_stops_receiving(self) -> None:
        provider = WindowedDataProvider()
        provider.track("q")
        with provider.on_updated("q") as stream:
            pass

        provider.accept("q", 1, make_success())

        assert stream.get(timeout=0.05) is None


# ---------------------------------------------------------------------------
# Eviction
# ---------------------------------------------------------------------------


class TestEviction:
    def test_idle_result_sets_are_evicted(self) -> None:
        clock = FakeClock()
        provider = WindowedDataProvider(idle_seconds=300, clock=clock)
        provider.track("q")
        provider.accept("q", 1, make_success())

        clock.now += 299
        assert provider.evict_idle() == []

        clock.now += 1
        assert provider.evict_idle() == ["q"]
        assert provider.snapshot("q") is None
        assert provider.is_tracked("q") is True

    def test_reads_keep_a_result_set_alive(self) -> None:
        clock = FakeClock()
        provider = WindowedDataProvider(idle_seconds=300, clock=clock)
        provider.track("q")
        provider.accept("q", 1, make_success())

        clock.now += 200
        provider.get_window("q", 0, 1)
        clock.now += 200

        assert provider.evict_idle() == []

    def test_open_stream_prevents_eviction(self) -> None:
        clock = FakeClock()
        provider = WindowedDataProvider(idle_seconds=300, clock=clock)
        provider.track("q")
        provider.accept("q", 1, make_success())
        stream = provider.on_updated("q")

        clock.now += 1000
        assert provider.evict_idle() == []

        stream.close()
        assert provider.evict_idle() == ["q"]

    def test_idle_query_stays_evicted_until_read(self) -> None:
        clock = FakeClock()
        provider = WindowedDataProvider(idle_seconds=300, clock=clock)
        provider.track("q")
        provider.accept("q", 1, FetchSuccess(rows=make_rows(1000), fetched_at=make_success().fetched_at))
        clock.now += 300
        assert provider.evict_idle() == ["q"]

        clock.now += 30
        assert provider.accept("q", 2, FetchSuccess(rows=make_rows(1000), fetched_at=make_success().fetched_at)) is True
        assert provider.snapshot("q") is None
        assert provider.accept("q", 1, make_success(4)) is False

        assert provider.get_window("q", 0, 10) == ()
        assert provider.accept("q", 3, make_success(4)) is True
        assert len(provider.get_window("q", 0, 10)) == 4

    def test_watched_query_keeps_receiving_rows_while_idle(self) -> None:
        clock = FakeClock()
        provider = WindowedDataProvider(idle_seconds=10, clock=clock)
        provider.track("q")
        stream = provider.on_updated("q")
        clock.now += 100

        assert provider.accept("q", 1, make_success(2)) is True

        update = stream.get(timeout=0.1)
        assert update is not None and update.row_count == 2
        assert provider.snapshot("q") is not None
