"""Merge status-filtered result sets into one de-duplicated, partitioned record list.

The API only offers listings filtered by status, so every dashboard issues
several fetches and folds them together here. Merge order is the precedence
order: a pending copy of a record beats an approved copy, which beats a
rejected copy. Nothing in this module performs I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from models import CATEGORIES, Circular


@dataclass
class FetchResult:
    source: str
    records: List[Circular] = field(default_factory=list)
    success: bool = True
    error: Optional[str] = None

    @classmethod
    def failed(cls, source: str, error: str) -> "FetchResult":
        return cls(source=source, records=[], success=False, error=error)


@dataclass
class StatusBuckets:
    pending: List[Circular] = field(default_factory=list)
    approved: List[Circular] = field(default_factory=list)
    rejected: List[Circular] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        return {"pending": len(self.pending), "approved": len(self.approved), "rejected": len(self.rejected)}


@dataclass
class ReconciledView:
    records: List[Circular] = field(default_factory=list)
    buckets: StatusBuckets = field(default_factory=StatusBuckets)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_partial(self) -> bool:
        return bool(self.errors)


def merge_result_sets(*results: FetchResult) -> List[Circular]:
    merged: List[Circular] = []
    seen: set[str] = set()
    for result in results:
        if result is None or not result.success:
            continue
        for record in result.records:
            if record.id in seen:
                continue
            seen.add(record.id)
            merged.append(record)
    return merged


def partition_by_status(records: Iterable[Circular]) -> StatusBuckets:
    buckets = StatusBuckets()
    for record in records:
        if record.status == "pending":
            buckets.pending.append(record)
        elif record.status == "rejected":
            buckets.rejected.append(record)
        else:
            buckets.approved.append(record)
    return buckets


def reconcile(
    pending: Optional[FetchResult] = None,
    approved: Optional[FetchResult] = None,
    rejected: Optional[FetchResult] = None,
) -> ReconciledView:
    ordered = [r for r in (pending, approved, rejected) if r is not None]
    records = merge_result_sets(*ordered)
    errors = {r.source: r.error or "Request failed" for r in ordered if not r.success}
    return ReconciledView(records=records, buckets=partition_by_status(records), errors=errors)


def filter_circulars(
    records: Sequence[Circular],
    query: str | None = None,
    category: str | None = None,
    approved_only: bool = False,
) -> List[Circular]:
    filtered = list(records)
    if approved_only:
        filtered = [c for c in filtered if c.status in (None, "approved")]
    if category:
        filtered = [c for c in filtered if c.category == category]
    if query and query.strip():
        filtered = [c for c in filtered if c.matches(query)]
    return filtered


def category_counts(records: Iterable[Circular]) -> Dict[str, int]:
    counts = {name: 0 for name in CATEGORIES}
    for record in records:
        if record.category in counts:
            counts[record.category] += 1
    return counts
