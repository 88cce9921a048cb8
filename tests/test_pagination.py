"""
Tests for page planning and the concurrent/sequential fetchers.

"Fan out, fan in, count twice." — schema.cx
"""

import math
import random
import threading
import time

import pytest

from gitlabserver.pagination import (
    FetchCancelledError,
    FetchPlan,
    FetchResult,
    PageDescriptor,
    PageFetchError,
    PartialFetchError,
    fetch_all_concurrent,
    fetch_all_sequential,
    plan_pages,
)


def make_pages(total: int, per_page: int) -> dict[int, list[int]]:
    """Simulated remote collection: item ids 1..total split into pages."""
    items = list(range(1, total + 1))
    return {
        page: items[(page - 1) * per_page : page * per_page]
        for page in range(1, plan_pages(total, per_page) + 1)
    }


# =============================================================================
# Page planning
# =============================================================================


@pytest.mark.parametrize(
    "total,per_page",
    [(0, 100), (1, 100), (99, 100), (100, 100), (101, 100), (250, 100), (1000, 7), (5, 1)],
)
def test_plan_pages_matches_ceiling(total: int, per_page: int) -> None:
    """Test page count is the ceiling of total / per_page."""
    assert plan_pages(total, per_page) == math.ceil(total / per_page)


def test_plan_pages_zero_total() -> None:
    """Test an empty collection needs no pages."""
    assert plan_pages(0, 100) == 0


def test_plan_pages_rejects_bad_input() -> None:
    """Test non-positive page size and negative totals are rejected."""
    with pytest.raises(ValueError, match="per_page"):
        plan_pages(10, 0)
    with pytest.raises(ValueError, match="negative"):
        plan_pages(-1, 100)


def test_fetch_plan_descriptors() -> None:
    """Test a plan yields one 1-based descriptor per page."""
    plan = FetchPlan.create(250, 100)

    assert plan.page_count == 3
    assert list(plan.descriptors()) == [
        PageDescriptor(page=1, per_page=100),
        PageDescriptor(page=2, per_page=100),
        PageDescriptor(page=3, per_page=100),
    ]


# =============================================================================
# Concurrent fetching
# =============================================================================


class TestFetchAllConcurrent:
    """Tests for fetch_all_concurrent."""

    def test_empty_collection_returns_immediately(self) -> None:
        """Test zero items means zero calls and an empty result."""
        calls = []

        result = fetch_all_concurrent(0, 100, lambda page: calls.append(page) or [])

        assert len(result) == 0
        assert result.ok
        assert calls == []
        assert result.plan.page_count == 0

    def test_all_pages_succeed(self) -> None:
        """Test every item from every page is present."""
        pages = make_pages(250, 100)

        result = fetch_all_concurrent(250, 100, lambda d: pages[d.page])

        assert result.ok
        assert len(result) == 250
        assert sorted(result.items) == list(range(1, 251))

    def test_result_independent_of_completion_order(self) -> None:
        """Test shuffled per-page latency changes neither size nor membership."""
        pages = make_pages(120, 10)
        expected = set(range(1, 121))

        for seed in range(3):
            rng = random.Random(seed)
            delays = {page: rng.uniform(0, 0.02) for page in pages}

            def fetch(descriptor: PageDescriptor) -> list[int]:
                time.sleep(delays[descriptor.page])
                return pages[descriptor.page]

            result = fetch_all_concurrent(120, 10, fetch, max_workers=6)

            assert len(result) == 120
            assert set(result.items) == expected

    def test_failed_page_is_reported_and_others_kept(self) -> None:
        """Test one failing page does not lose the other pages."""
        pages = make_pages(300, 100)

        def fetch(descriptor: PageDescriptor) -> list[int]:
            if descriptor.page == 2:
                raise ConnectionError("boom")
            return pages[descriptor.page]

        result = fetch_all_concurrent(300, 100, fetch)

        assert not result.ok
        assert result.failed_pages == [2]
        assert isinstance(result.errors[0], PageFetchError)
        assert isinstance(result.errors[0].cause, ConnectionError)
        assert sorted(result.items) == pages[1] + pages[3]

    def test_raise_for_errors_carries_partial_items(self) -> None:
        """Test raise_for_errors exposes both errors and partial items."""
        pages = make_pages(30, 10)

        def fetch(descriptor: PageDescriptor) -> list[int]:
            if descriptor.page in (1, 3):
                raise RuntimeError(f"page {descriptor.page} down")
            return pages[descriptor.page]

        result = fetch_all_concurrent(30, 10, fetch)

        with pytest.raises(PartialFetchError, match=r"2 page\(s\) failed \(1, 3\)") as exc_info:
            result.raise_for_errors()
        assert sorted(exc_info.value.items) == pages[2]
        assert [error.page for error in exc_info.value.errors] == [1, 3]

    def test_stale_count_trailing_empty_page(self) -> None:
        """Test an empty trailing page is a harmless no-op."""
        pages = make_pages(150, 100)
        pages[3] = []

        result = fetch_all_concurrent(201, 100, lambda d: pages[d.page])

        assert result.ok
        assert len(result) == 150

    def test_fifty_pages_with_random_delay(self) -> None:
        """Test no updates are lost under heavy concurrent appends."""
        pages = make_pages(5000, 100)
        rng = random.Random(42)
        delays = {page: rng.uniform(0, 0.01) for page in pages}

        def fetch(descriptor: PageDescriptor) -> list[int]:
            time.sleep(delays[descriptor.page])
            return pages[descriptor.page]

        result = fetch_all_concurrent(5000, 100, fetch, max_workers=50)

        assert result.plan.page_count == 50
        assert len(result) == 5000
        assert len(set(result.items)) == 5000

    def test_concurrency_is_bounded(self) -> None:
        """Test no more than max_workers pages are in flight."""
        lock = threading.Lock()
        in_flight = 0
        peak = 0

        def fetch(descriptor: PageDescriptor) -> list[int]:
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
            time.sleep(0.02)
            with lock:
                in_flight -= 1
            return [descriptor.page]

        result = fetch_all_concurrent(12, 1, fetch, max_workers=3)

        assert len(result) == 12
        assert peak <= 3

    def test_page_timeout_abandons_hung_page(self) -> None:
        """Test a hung page is recorded as timed out instead of stalling the join."""
        release = threading.Event()

        def fetch(descriptor: PageDescriptor) -> list[int]:
            if descriptor.page == 2:
                release.wait(5)
            return [descriptor.page]

        started = time.monotonic()
        try:
            result = fetch_all_concurrent(3, 1, fetch, page_timeout=0.2)
        finally:
            release.set()
        elapsed = time.monotonic() - started

        assert elapsed < 3
        assert result.failed_pages == [2]
        assert isinstance(result.errors[0].cause, TimeoutError)
        assert sorted(result.items) == [1, 3]

    def test_hung_page_does_not_block_queued_pages(self) -> None:
        """Test a page queued behind a hung one still runs once the hung page times out."""
        release = threading.Event()

        def fetch(descriptor: PageDescriptor) -> list[int]:
            if descriptor.page == 1:
                release.wait(5)
            return [descriptor.page]

        started = time.monotonic()
        try:
            result = fetch_all_concurrent(2, 1, fetch, max_workers=1, page_timeout=0.2)
        finally:
            release.set()
        elapsed = time.monotonic() - started

        assert elapsed < 2
        assert result.failed_pages == [1]
        assert isinstance(result.errors[0].cause, TimeoutError)
        assert list(result.items) == [2]

    def test_late_result_after_timeout_is_dropped(self) -> None:
        """Test items arriving after the deadline never show up."""
        release = threading.Event()
        returned = threading.Event()

        def fetch(descriptor: PageDescriptor) -> list[int]:
            if descriptor.page == 1:
                release.wait(5)
                returned.set()
                return [100]
            return [descriptor.page]

        result = fetch_all_concurrent(2, 1, fetch, page_timeout=0.1)
        release.set()
        returned.wait(5)

        assert 100 not in result.items
        assert result.failed_pages == [1]

    def test_cancel_event_skips_remaining_pages(self) -> None:
        """Test setting the cancel event drops pages that have not run yet."""
        cancel = threading.Event()

        def fetch(descriptor: PageDescriptor) -> list[int]:
            if descriptor.page == 1:
                cancel.set()
            return [descriptor.page]

        result = fetch_all_concurrent(5, 1, fetch, max_workers=1, cancel_event=cancel)

        assert list(result.items) == [1]
        assert result.failed_pages == [2, 3, 4, 5]
        assert all(isinstance(error.cause, FetchCancelledError) for error in result.errors)

    def test_errors_sorted_by_page(self) -> None:
        """Test errors come back in page order whatever order they happened in."""

        def fetch(descriptor: PageDescriptor) -> list[int]:
            time.sleep(0.001 * (10 - descriptor.page))
            raise ValueError("nope")

        result = fetch_all_concurrent(10, 1, fetch, max_workers=10)

        assert result.failed_pages == list(range(1, 11))
        assert len(result) == 0


class TestFetchResult:
    """Tests for FetchResult helpers."""

    def test_sorted_by_identity(self) -> None:
        """Test sorted_by restores a stable order."""
        result = FetchResult(items=(3, 1, 2))
        assert result.sorted_by(lambda item: item) == [1, 2, 3]

    def test_iteration_and_len(self) -> None:
        """Test the result behaves like a read-only collection."""
        result = FetchResult(items=("a", "b"))
        assert len(result) == 2
        assert list(result) == ["a", "b"]
        assert result.ok
        result.raise_for_errors()


# =============================================================================
# Sequential fetching
# =============================================================================


class TestFetchAllSequential:
    """Tests for fetch_all_sequential."""

    def test_follows_next_page_chain(self) -> None:
        """Test pages 1 -> 2 -> 3 -> 0 are all collected."""
        chain = {1: (["a", "b"], 2), 2: (["c"], 3), 3: (["d"], 0)}
        seen = []

        def fetch(descriptor: PageDescriptor) -> tuple[list[str], int]:
            seen.append(descriptor.page)
            return chain[descriptor.page]

        items = fetch_all_sequential(fetch)

        assert items == ["a", "b", "c", "d"]
        assert seen == [1, 2, 3]

    def test_single_page(self) -> None:
        """Test a lone page with no successor."""
        assert fetch_all_sequential(lambda d: ([1, 2], 0)) == [1, 2]

    def test_passes_page_size(self) -> None:
        """Test the configured page size reaches the fetcher."""
        sizes = []

        def fetch(descriptor: PageDescriptor) -> tuple[list[int], int]:
            sizes.append(descriptor.per_page)
            return [], 0

        fetch_all_sequential(fetch, per_page=25)
        assert sizes == [25]

    def test_error_aborts_immediately(self) -> None:
        """Test the first failure stops the walk and is surfaced."""
        seen = []

        def fetch(descriptor: PageDescriptor) -> tuple[list[int], int]:
            seen.append(descriptor.page)
            if descriptor.page == 2:
                raise ConnectionError("lost")
            return [descriptor.page], descriptor.page + 1

        with pytest.raises(PageFetchError) as exc_info:
            fetch_all_sequential(fetch)

        assert exc_info.value.page == 2
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert seen == [1, 2]
