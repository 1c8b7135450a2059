"""Parallel list loading for the dashboards and the per-view record cache."""
from __future__ import annotations

import contextvars
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from models import Circular
from utils.api_client import APIError, CircularNestAPI, records_from
from utils.reconciliation import FetchResult, ReconciledView, partition_by_status, reconcile

logger = logging.getLogger("app.dashboard_feed")

Fetcher = Callable[[], FetchResult]

PENDING_SOURCE = "pending"
APPROVED_SOURCE = "approved"
REJECTED_SOURCE = "rejected"
SUBMISSIONS_SOURCE = "submissions"

OVERVIEW_VIEW = "overview"
APPROVED_VIEW = "approved"
SUBMISSIONS_VIEW = "submissions"
REVIEW_VIEW = "review"
ADMIN_VIEWS = (OVERVIEW_VIEW, REVIEW_VIEW)
VIEWS = (OVERVIEW_VIEW, APPROVED_VIEW, SUBMISSIONS_VIEW, REVIEW_VIEW)


def to_records(items: List, source: str, default_status: str | None = None) -> List[Circular]:
    records: List[Circular] = []
    for item in items:
        if not isinstance(item, Mapping):
            continue
        try:
            records.append(Circular.from_api(item, default_status=default_status))
        except ValueError:
            logger.warning("record_without_id_skipped", extra={"source": source})
    return records


def _guarded(source: str, call: Callable[[], List[Circular]]) -> FetchResult:
    # SessionExpiredError propagates to the app-level handler.
    try:
        return FetchResult(source=source, records=call())
    except APIError as exc:
        logger.warning("list_fetch_failed", extra={"source": source, "status": exc.status_code, "error": exc.message})
        return FetchResult.failed(source, exc.message)


def fetch_pending_queue(api: CircularNestAPI) -> FetchResult:
    def call() -> List[Circular]:
        body = api.list_pending_uploads("pending")
        items = records_from(body, "pendingUploads", "submissions", "circulars")
        return to_records(items, PENDING_SOURCE, default_status="pending")

    return _guarded(PENDING_SOURCE, call)


def fetch_circulars(api: CircularNestAPI, status: str, limit: int | None = None, category: str | None = None) -> FetchResult:
    def call() -> List[Circular]:
        body = api.list_circulars(status=status, limit=limit, category=category)
        return to_records(records_from(body, "circulars"), status)

    return _guarded(status, call)


def fetch_my_submissions(api: CircularNestAPI) -> FetchResult:
    def call() -> List[Circular]:
        body = api.list_my_submissions()
        items = records_from(body, "submissions", "pendingUploads", "circulars")
        return to_records(items, SUBMISSIONS_SOURCE, default_status="pending")

    return _guarded(SUBMISSIONS_SOURCE, call)


def fetch_batch(fetchers: Mapping[str, Fetcher]) -> Dict[str, FetchResult]:
    """Issue every fetch at once and wait for all of them."""
    if not fetchers:
        return {}
    with ThreadPoolExecutor(max_workers=len(fetchers), thread_name_prefix="circular-fetch") as pool:
        # Each worker runs in a copy of the caller's context so request-scoped state
        # (the session holding the bearer token) stays visible to the API client.
        futures = {
            name: pool.submit(contextvars.copy_context().run, fetcher)
            for name, fetcher in fetchers.items()
        }
        return {name: future.result() for name, future in futures.items()}


def load_admin_overview(api: CircularNestAPI, limit: int = 100) -> ReconciledView:
    results = fetch_batch(
        {
            PENDING_SOURCE: lambda: fetch_pending_queue(api),
            APPROVED_SOURCE: lambda: fetch_circulars(api, "approved", limit),
            REJECTED_SOURCE: lambda: fetch_circulars(api, "rejected", limit),
        }
    )
    view = reconcile(results[PENDING_SOURCE], results[APPROVED_SOURCE], results[REJECTED_SOURCE])
    logger.info(
        "admin_overview_reconciled",
        extra={"total": len(view.records), **view.buckets.counts(), "failed_sources": sorted(view.errors)},
    )
    return view


def load_review_queue(api: CircularNestAPI) -> ReconciledView:
    return reconcile(pending=fetch_pending_queue(api))


def load_my_submissions(api: CircularNestAPI) -> ReconciledView:
    result = fetch_my_submissions(api)
    view = ReconciledView(records=list(result.records), buckets=partition_by_status(result.records))
    if not result.success:
        view.errors[result.source] = result.error or "Request failed"
    return view


def load_user_dashboard(api: CircularNestAPI, limit: int = 100) -> Tuple[FetchResult, ReconciledView]:
    results = fetch_batch(
        {
            APPROVED_SOURCE: lambda: fetch_circulars(api, "approved", limit),
            SUBMISSIONS_SOURCE: lambda: fetch_my_submissions(api),
        }
    )
    submissions = results[SUBMISSIONS_SOURCE]
    view = ReconciledView(records=list(submissions.records), buckets=partition_by_status(submissions.records))
    if not submissions.success:
        view.errors[submissions.source] = submissions.error or "Request failed"
    return results[APPROVED_SOURCE], view


def load_approved(api: CircularNestAPI, limit: int = 100) -> ReconciledView:
    return reconcile(approved=fetch_circulars(api, "approved", limit))


def view_loader(api: CircularNestAPI, view: str, limit: int = 100) -> Callable[[], ReconciledView]:
    """Return the loader that backs one cached view."""
    loaders = {
        OVERVIEW_VIEW: lambda: load_admin_overview(api, limit),
        APPROVED_VIEW: lambda: load_approved(api, limit),
        SUBMISSIONS_VIEW: lambda: load_my_submissions(api),
        REVIEW_VIEW: lambda: load_review_queue(api),
    }
    if view not in loaders:
        raise ValueError(f"Unknown view: {view}")
    return loaders[view]


class DashboardState:
    """Local copy of one view's records.

    Optimistic edits (``discard``/``replace``) hold until the next refresh,
    which replaces the whole view with server truth. ``current`` refreshes
    once the copy is older than ``max_age`` seconds.
    """

    def __init__(self, loader: Callable[[], ReconciledView], max_age: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._loader = loader
        self.max_age = max_age
        self._clock = clock
        self.view: Optional[ReconciledView] = None
        self.last_updated: Optional[float] = None
        self.refreshed_at: Optional[float] = None

    def refresh(self) -> ReconciledView:
        view = self._loader()
        self.view = view
        self.last_updated = self._clock()
        self.refreshed_at = time.time()
        return view

    def invalidate(self) -> None:
        """Force the next ``current`` call to reload."""
        self.last_updated = None

    def is_stale(self) -> bool:
        if self.view is None or self.last_updated is None:
            return True
        return self._clock() - self.last_updated >= self.max_age

    def current(self) -> ReconciledView:
        if self.is_stale():
            return self.refresh()
        return self.view

    def find(self, record_id: str) -> Optional[Circular]:
        if self.view is None:
            return None
        return next((r for r in self.view.records if r.id == record_id), None)

    def discard(self, record_id: str) -> bool:
        if self.view is None:
            return False
        remaining = [r for r in self.view.records if r.id != record_id]
        if len(remaining) == len(self.view.records):
            return False
        self.view = ReconciledView(records=remaining, buckets=partition_by_status(remaining), errors=dict(self.view.errors))
        return True

    def replace(self, record: Circular) -> bool:
        if self.view is None:
            return False
        updated, found = [], False
        for existing in self.view.records:
            if existing.id == record.id:
                updated.append(record)
                found = True
            else:
                updated.append(existing)
        if found:
            self.view = ReconciledView(records=updated, buckets=partition_by_status(updated), errors=dict(self.view.errors))
        return found


@dataclass
class StateRegistry:
    """One :class:`DashboardState` per (owner, view).

    Entries nobody has read for ``idle_seconds`` are swept on the next ``get``.
    """

    max_age: float
    idle_seconds: float = 900
    clock: Callable[[], float] = time.monotonic
    _states: Dict[Tuple[str, str], DashboardState] = field(default_factory=dict)
    _last_access: Dict[Tuple[str, str], float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, owner: str, view: str, loader: Callable[[], ReconciledView]) -> DashboardState:
        key = (owner, view)
        with self._lock:
            now = self.clock()
            self._sweep(now)
            state = self._states.get(key)
            if state is None:
                state = DashboardState(loader, self.max_age)
                self._states[key] = state
            self._last_access[key] = now
            return state

    def peek(self, owner: str, view: str) -> Optional[DashboardState]:
        return self._states.get((owner, view))

    def invalidate(self, owner: str, *views: str) -> None:
        for view in views:
            state = self._states.get((owner, view))
            if state is not None:
                state.invalidate()

    def drop_owner(self, owner: str) -> None:
        with self._lock:
            for key in [k for k in self._states if k[0] == owner]:
                del self._states[key]
                self._last_access.pop(key, None)

    def _sweep(self, now: float) -> int:
        idle = [key for key, seen in self._last_access.items() if now - seen >= self.idle_seconds]
        for key in idle:
            self._states.pop(key, None)
            del self._last_access[key]
        if idle:
            logger.debug("dashboard_states_swept", extra={"removed": len(idle)})
        return len(idle)

    def sweep(self) -> int:
        """Drop idle entries now; returns how many went."""
        with self._lock:
            return self._sweep(self.clock())

    def __len__(self) -> int:
        return len(self._states)
