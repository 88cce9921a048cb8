"""
Fetching every page of a paginated collection.

Two strategies live here. The concurrent one plans pages from a known total
count and fans them out over a bounded thread pool, merging items into one
shared list under a lock. The sequential one walks next-page indices until
the server says there are no more.

"Pagination is just recursion with extra steps." — schema.cx
"""

import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterable, Iterator, TypeVar

from .rich_utils import Colors, console, print_warning

T = TypeVar("T")

DEFAULT_PER_PAGE = 100  # GitLab maximum
DEFAULT_MAX_WORKERS = 8

# How often the join loop wakes up to check deadlines and cancellation
_POLL_INTERVAL = 0.05


class PageFetchError(Exception):
    """A single page could not be fetched."""

    def __init__(self, page: int, cause: BaseException) -> None:
        self.page = page
        self.cause = cause
        super().__init__(f"page {page}: {cause}")


class FetchCancelledError(Exception):
    """Cause recorded for pages dropped because the fetch was cancelled."""

    pass


class PartialFetchError(Exception):
    """
    Some pages failed while the rest were fetched.

    Carries both the page errors and the items that did arrive, so callers
    can decide whether a partial result is good enough.
    """

    def __init__(self, errors: Iterable[PageFetchError], items: Iterable[Any]) -> None:
        self.errors = tuple(errors)
        self.items = tuple(items)
        pages = ", ".join(str(error.page) for error in self.errors)
        super().__init__(
            f"{len(self.errors)} page(s) failed ({pages}); {len(self.items)} items fetched"
        )


def plan_pages(total_count: int, per_page: int) -> int:
    """
    Number of pages needed to cover total_count items.

    Raises:
        ValueError: If per_page is not positive or total_count is negative
    """
    if per_page <= 0:
        raise ValueError(f"per_page must be greater than zero (got {per_page})")
    if total_count < 0:
        raise ValueError(f"total_count cannot be negative (got {total_count})")
    return (total_count + per_page - 1) // per_page


@dataclass(frozen=True)
class PageDescriptor:
    """One page request: 1-based index plus page size."""

    page: int
    per_page: int


@dataclass(frozen=True)
class FetchPlan:
    """Page layout derived once per fetch-all call."""

    total_count: int
    per_page: int
    page_count: int

    @classmethod
    def create(cls, total_count: int, per_page: int) -> "FetchPlan":
        """Build a plan, computing the page count."""
        return cls(
            total_count=total_count,
            per_page=per_page,
            page_count=plan_pages(total_count, per_page),
        )

    def descriptors(self) -> Iterator[PageDescriptor]:
        """Yield one descriptor per page, starting at page 1."""
        for page in range(1, self.page_count + 1):
            yield PageDescriptor(page=page, per_page=self.per_page)


@dataclass(frozen=True)
class FetchResult(Generic[T]):
    """
    Items gathered by a fetch-all call, plus the pages that failed.

    Item order is unspecified: pages complete in any order. Use sorted_by()
    when a stable order matters.
    """

    items: tuple[T, ...] = ()
    errors: tuple[PageFetchError, ...] = ()
    plan: FetchPlan | None = None

    @property
    def ok(self) -> bool:
        """True when every page was fetched."""
        return not self.errors

    @property
    def failed_pages(self) -> list[int]:
        """Indices of the pages that failed, ascending."""
        return [error.page for error in self.errors]

    def raise_for_errors(self) -> None:
        """Raise PartialFetchError if any page failed."""
        if self.errors:
            raise PartialFetchError(self.errors, self.items)

    def sorted_by(self, key: Callable[[T], Any]) -> list[T]:
        """Return the items sorted by an identity field (e.g. lambda p: p.id)."""
        return sorted(self.items, key=key)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)


def fetch_all_concurrent(
    total_count: int,
    per_page: int,
    fetch_page: Callable[[PageDescriptor], Iterable[T]],
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    page_timeout: float | None = None,
    cancel_event: threading.Event | None = None,
    label: str = "items",
) -> FetchResult[T]:
    """
    Fetch every page of a collection whose total size is known, in parallel.

    "Threading is just multitasking for computers. They're better at it." — schema.cx

    One task per page is submitted to a pool of at most max_workers threads.
    A failing page never aborts its siblings: its error is recorded and its
    items are simply missing from the result. The call returns once every
    task has finished, except that:

    - a task running longer than page_timeout seconds is abandoned and its
      page recorded as failed with a TimeoutError; a late result is dropped
    - once cancel_event is set, unstarted pages are cancelled and running
      ones abandoned, all recorded as failed with FetchCancelledError

    Args:
        total_count: Total number of items in the collection
        per_page: Items per page
        fetch_page: Callable returning the items of one page; raises on failure
        max_workers: Maximum number of pages in flight
        page_timeout: Wall-clock budget per running page, in seconds
        cancel_event: Set it to abort the fetch
        label: Item noun for progress output

    Returns:
        FetchResult with the merged items and the per-page errors
    """
    plan = FetchPlan.create(total_count, per_page)
    if plan.page_count == 0:
        return FetchResult(plan=plan)

    items: list[T] = []
    errors: dict[int, PageFetchError] = {}
    finished: set[int] = set()
    lock = threading.Lock()

    def record_failure(page: int, cause: BaseException) -> bool:
        # First outcome wins; a page that already finished cannot fail later
        with lock:
            if page in finished or page in errors:
                return False
            errors[page] = PageFetchError(page, cause)
            return True

    def give_up(page: int, cause: BaseException) -> None:
        if record_failure(page, cause):
            print_warning(f"Gave up on {label} page {page}: {cause}", prefix="⚠️")

    def run_page(descriptor: PageDescriptor) -> None:
        if cancel_event is not None and cancel_event.is_set():
            record_failure(descriptor.page, FetchCancelledError("fetch cancelled"))
            return

        try:
            page_items = list(fetch_page(descriptor))
        except Exception as e:
            if record_failure(descriptor.page, e):
                print_warning(f"Failed to fetch {label} page {descriptor.page}: {e}", prefix="⚠️")
            return

        with lock:
            if descriptor.page in errors:
                # Abandoned by the join loop, the result arrived too late
                return
            items.extend(page_items)
            finished.add(descriptor.page)

    workers = min(max_workers, plan.page_count)
    console.print(
        f"   [{Colors.MUTED}]📄 Fetching {plan.total_count} {label} across "
        f"{plan.page_count} pages ({workers} workers)[/{Colors.MUTED}]"
    )

    # An abandoned task keeps its thread until the remote call returns, so the
    # pool may grow to one thread per page. The in-flight window below is what
    # holds concurrency to `workers`.
    executor = ThreadPoolExecutor(max_workers=plan.page_count, thread_name_prefix="page-fetch")
    queued: deque[PageDescriptor] = deque(plan.descriptors())
    in_flight: dict[Future, int] = {}
    submitted_at: dict[Future, float] = {}
    abandoned = False
    poll = _POLL_INTERVAL if (page_timeout is not None or cancel_event is not None) else None

    def dispatch() -> None:
        while queued and len(in_flight) < workers:
            descriptor = queued.popleft()
            future = executor.submit(run_page, descriptor)
            in_flight[future] = descriptor.page
            submitted_at[future] = time.monotonic()

    try:
        dispatch()
        while in_flight:
            done, _ = wait(set(in_flight), timeout=poll, return_when=FIRST_COMPLETED)
            for future in done:
                del in_flight[future]
                future.result()

            if cancel_event is not None and cancel_event.is_set():
                for page in sorted(in_flight.values()):
                    give_up(page, FetchCancelledError("fetch cancelled"))
                    abandoned = True
                for descriptor in queued:
                    give_up(descriptor.page, FetchCancelledError("fetch cancelled"))
                in_flight.clear()
                queued.clear()
                break

            if page_timeout is not None:
                now = time.monotonic()
                expired = [
                    future for future in in_flight if now - submitted_at[future] > page_timeout
                ]
                for future in expired:
                    page = in_flight.pop(future)
                    give_up(page, TimeoutError(f"page {page} exceeded {page_timeout:.1f}s"))
                    abandoned = True

            dispatch()
    finally:
        # Abandoned threads cannot be killed; do not let them hold up the join
        executor.shutdown(wait=not abandoned and not in_flight, cancel_futures=True)

    with lock:
        result = FetchResult(
            items=tuple(items),
            errors=tuple(errors[page] for page in sorted(errors)),
            plan=plan,
        )

    if result.ok:
        console.print(f"   [green]✓ Fetched {len(result)} {label}[/green]")
    else:
        console.print(
            f"   [yellow]⚠ Fetched {len(result)} {label}, "
            f"{len(result.errors)} of {plan.page_count} pages failed[/yellow]"
        )
    return result


def fetch_all_sequential(
    fetch_page: Callable[[PageDescriptor], tuple[Iterable[T], int]],
    *,
    per_page: int = DEFAULT_PER_PAGE,
    start_page: int = 1,
    label: str = "items",
) -> list[T]:
    """
    Walk a cursor-paginated collection one page at a time.

    fetch_page returns the page's items and the next page index, 0 meaning
    there are no more pages. The first failure aborts the walk.

    Raises:
        PageFetchError: Wrapping whatever fetch_page raised
    """
    if per_page <= 0:
        raise ValueError(f"per_page must be greater than zero (got {per_page})")

    items: list[T] = []
    page = start_page

    while page:
        try:
            page_items, next_page = fetch_page(PageDescriptor(page=page, per_page=per_page))
        except Exception as e:
            raise PageFetchError(page, e) from e

        before = len(items)
        items.extend(page_items)
        console.print(f"   [{Colors.MUTED}]📦 Page {page}: {len(items) - before} {label}[/{Colors.MUTED}]")
        page = next_page

    return items
