"""Admin review transitions and delete policy, applied optimistically to the local list."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from models import CIRCULAR_STATUSES, Circular, SessionUser
from utils.api_client import CircularNestAPI
from utils.dashboard_feed import DashboardState

logger = logging.getLogger("app.review_workflow")


class ReviewActionError(Exception):
    """Raised when an action is refused locally, before any request is made."""


def can_delete(record: Circular, user: Optional[SessionUser]) -> bool:
    if user is None:
        return False
    if user.is_admin:
        return True
    return record.is_pending and record.uploaded_by == user.id


def approve(api: CircularNestAPI, state: Optional[DashboardState], record_id: str, notes: str | None = None) -> dict:
    body = api.approve_pending_upload(record_id, notes)
    removed = state.discard(record_id) if state is not None else False
    logger.info("submission_approved", extra={"record_id": record_id, "removed_locally": removed})
    return body


def reject(api: CircularNestAPI, state: Optional[DashboardState], record_id: str, notes: str | None = None) -> dict:
    body = api.reject_pending_upload(record_id, notes)
    removed = state.discard(record_id) if state is not None else False
    logger.info("submission_rejected", extra={"record_id": record_id, "removed_locally": removed, "has_notes": bool(notes)})
    return body


def set_circular_status(
    api: CircularNestAPI,
    state: Optional[DashboardState],
    record_id: str,
    status: str,
    notes: str | None = None,
) -> dict:
    if status not in CIRCULAR_STATUSES:
        raise ReviewActionError(f"Unknown status: {status}")
    body = api.update_circular_status(record_id, status, notes)
    if state is not None:
        existing = state.find(record_id)
        if existing is not None:
            state.replace(replace(existing, status=status, review_notes=notes or existing.review_notes))
    logger.info("circular_status_set", extra={"record_id": record_id, "status": status})
    return body


def delete_submission(
    api: CircularNestAPI,
    state: Optional[DashboardState],
    record: Circular,
    user: Optional[SessionUser],
) -> dict:
    if not can_delete(record, user):
        logger.info("delete_blocked", extra={"record_id": record.id, "status": record.status})
        raise ReviewActionError(
            "Cannot delete this circular. Only pending submissions can be withdrawn; "
            "administrators manage published circulars."
        )
    body = api.delete_pending_upload(record.id)
    if state is not None:
        state.discard(record.id)
    logger.info("submission_deleted", extra={"record_id": record.id})
    return body


def delete_circular(api: CircularNestAPI, state: Optional[DashboardState], record_id: str) -> dict:
    body = api.delete_circular(record_id)
    if state is not None:
        state.discard(record_id)
    logger.info("circular_deleted", extra={"record_id": record_id})
    return body


def set_record_status(
    api: CircularNestAPI,
    state: Optional[DashboardState],
    record: Circular,
    status: str,
    notes: str | None = None,
) -> dict:
    """Move ``record`` to ``status`` through whichever collection holds it.

    Pending submissions live under ``/api/pending`` and only leave it by
    approval or rejection; everything else takes the circular status update.
    """
    if not record.is_pending:
        return set_circular_status(api, state, record.id, status, notes)
    if status == "approved":
        return approve(api, state, record.id, notes)
    if status == "rejected":
        return reject(api, state, record.id, notes)
    raise ReviewActionError("Submission is already pending review.")
