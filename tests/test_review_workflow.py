"""
Unit tests for review transitions, the delete policy, and the cached dashboard state.
"""
from unittest.mock import MagicMock

import pytest

from models import Circular, SessionUser
from utils.api_client import APIError
from utils.dashboard_feed import DashboardState, StateRegistry
from utils.reconciliation import FetchResult, reconcile
from utils.review_workflow import (
    ReviewActionError,
    approve,
    can_delete,
    delete_submission,
    reject,
    set_circular_status,
    set_record_status,
)

ADMIN = SessionUser(id="u-admin", email="admin@circularnest.in", role="admin")
INSTITUTION = SessionUser(id="u-1", email="office@greenvalley.edu.in", role="user")


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def pending_view(count):
    records = [Circular(id=f"P{i}", title=f"Pending {i}", status="pending", uploaded_by="u-1") for i in range(count)]
    return reconcile(pending=FetchResult("pending", records))


@pytest.fixture
def api():
    client = MagicMock()
    client.approve_pending_upload.return_value = {"success": True}
    client.reject_pending_upload.return_value = {"success": True}
    client.delete_pending_upload.return_value = {"success": True}
    client.update_circular_status.return_value = {"success": True}
    return client


@pytest.fixture
def state():
    loader = MagicMock(side_effect=lambda: pending_view(3))
    review = DashboardState(loader, max_age=10, clock=FakeClock())
    review.refresh()
    return review


class TestApproveReject:
    """Optimistic removal after review actions"""

    def test_approve_removes_record_locally(self, api, state):
        """Test a pending list of N shrinks to N-1 without a re-fetch"""
        approve(api, state, "P1", "Looks good")

        api.approve_pending_upload.assert_called_once_with("P1", "Looks good")
        assert [r.id for r in state.view.records] == ["P0", "P2"]
        assert [r.id for r in state.view.buckets.pending] == ["P0", "P2"]
        assert state._loader.call_count == 1

    def test_reject_removes_record_locally(self, api, state):
        """Test rejection behaves the same as approval locally"""
        reject(api, state, "P0", "Wrong category")

        api.reject_pending_upload.assert_called_once_with("P0", "Wrong category")
        assert state.find("P0") is None
        assert len(state.view.records) == 2

    def test_failed_approve_leaves_list_untouched(self, api, state):
        """Test an API failure does not remove anything"""
        api.approve_pending_upload.side_effect = APIError("Server error", status_code=500)

        with pytest.raises(APIError):
            approve(api, state, "P1")

        assert len(state.view.records) == 3

    def test_refresh_replaces_optimistic_state(self, api, state):
        """Test the next refresh restores server truth"""
        approve(api, state, "P1")
        state.refresh()
        assert len(state.view.records) == 3


class TestDeletePolicy:
    """Who may delete what"""

    def test_admin_may_delete_anything(self):
        """Test administrators are unrestricted"""
        assert can_delete(Circular(id="A", status="approved"), ADMIN)

    def test_institution_may_delete_pending_only(self):
        """Test owners can only withdraw pending submissions"""
        assert can_delete(Circular(id="P", status="pending", uploaded_by="u-1"), INSTITUTION)
        assert not can_delete(Circular(id="A", status="approved"), INSTITUTION)
        assert not can_delete(Circular(id="R", status="rejected"), INSTITUTION)

    def test_institution_cannot_delete_someone_elses_pending(self):
        """Test withdrawal is limited to the uploader"""
        assert not can_delete(Circular(id="P", status="pending", uploaded_by="u-2"), INSTITUTION)
        assert not can_delete(Circular(id="G", status="pending"), INSTITUTION)

    def test_anonymous_may_not_delete(self):
        """Test a missing user is refused"""
        assert not can_delete(Circular(id="P", status="pending", uploaded_by="u-1"), None)

    def test_blocked_delete_makes_no_request(self, api, state):
        """Test a refused delete never reaches the API"""
        approved = Circular(id="A", status="approved")
        with pytest.raises(ReviewActionError):
            delete_submission(api, state, approved, INSTITUTION)
        api.delete_pending_upload.assert_not_called()

    def test_allowed_delete_discards_locally(self, api, state):
        """Test a pending withdrawal removes the record"""
        delete_submission(api, state, state.find("P2"), INSTITUTION)
        api.delete_pending_upload.assert_called_once_with("P2")
        assert state.find("P2") is None


class TestSetCircularStatus:
    """Admin status override on published circulars"""

    def test_status_change_moves_bucket(self, api):
        """Test the local copy moves to its new bucket"""
        view = reconcile(approved=FetchResult("approved", [Circular(id="A", status="approved")]))
        overview = DashboardState(lambda: view, max_age=10, clock=FakeClock())
        overview.refresh()

        set_circular_status(api, overview, "A", "rejected", "Superseded")

        api.update_circular_status.assert_called_once_with("A", "rejected", "Superseded")
        assert [r.id for r in overview.view.buckets.rejected] == ["A"]
        assert overview.find("A").review_notes == "Superseded"

    def test_unknown_status_rejected(self, api):
        """Test invalid statuses never reach the API"""
        with pytest.raises(ReviewActionError):
            set_circular_status(api, None, "A", "archived")
        api.update_circular_status.assert_not_called()

    def test_pending_record_is_approved_not_status_updated(self, api, state):
        """Test a pending submission goes through the review endpoint"""
        set_record_status(api, state, state.find("P1"), "approved", "Fine")

        api.approve_pending_upload.assert_called_once_with("P1", "Fine")
        api.update_circular_status.assert_not_called()
        assert state.find("P1") is None

    def test_pending_record_rejected_through_review(self, api, state):
        """Test rejecting a pending submission uses the reject endpoint"""
        set_record_status(api, state, state.find("P0"), "rejected")
        api.reject_pending_upload.assert_called_once_with("P0", None)
        api.update_circular_status.assert_not_called()

    def test_pending_to_pending_is_refused(self, api, state):
        """Test a no-op transition makes no request"""
        with pytest.raises(ReviewActionError):
            set_record_status(api, state, state.find("P0"), "pending")
        api.approve_pending_upload.assert_not_called()
        api.update_circular_status.assert_not_called()

    def test_published_record_uses_status_update(self, api):
        """Test non-pending records keep the circular status call"""
        set_record_status(api, None, Circular(id="A", status="approved"), "rejected", "Old")
        api.update_circular_status.assert_called_once_with("A", "rejected", "Old")


class TestDashboardState:
    """Staleness and the per-owner registry"""

    def test_current_refreshes_only_when_stale(self):
        """Test the cached view is reused inside the refresh window"""
        clock = FakeClock()
        loader = MagicMock(side_effect=lambda: pending_view(1))
        cached = DashboardState(loader, max_age=10, clock=clock)

        cached.current()
        clock.now += 5
        cached.current()
        assert loader.call_count == 1

        clock.now += 5
        cached.current()
        assert loader.call_count == 2

    def test_invalidate_forces_reload(self):
        """Test invalidation makes the next read hit the loader"""
        loader = MagicMock(side_effect=lambda: pending_view(1))
        cached = DashboardState(loader, max_age=10, clock=FakeClock())
        cached.current()
        cached.invalidate()
        cached.current()
        assert loader.call_count == 2

    def test_registry_scopes_by_owner(self):
        """Test two owners never share a cached view"""
        registry = StateRegistry(max_age=10)
        first = registry.get("user:1", "review", lambda: pending_view(1))
        second = registry.get("user:2", "review", lambda: pending_view(2))

        assert first is not second
        assert registry.get("user:1", "review", lambda: pending_view(5)) is first

        registry.drop_owner("user:1")
        assert registry.peek("user:1", "review") is None
        assert registry.peek("user:2", "review") is second

    def test_registry_sweeps_idle_entries(self):
        """Test entries nobody reads for the idle window are dropped"""
        clock = FakeClock()
        registry = StateRegistry(max_age=10, idle_seconds=60, clock=clock)
        old = registry.get("visitor:a", "approved", lambda: pending_view(1))
        registry.get("user:1", "review", lambda: pending_view(1))

        clock.now += 30
        registry.get("user:1", "review", lambda: pending_view(1))
        clock.now += 30
        registry.get("user:2", "review", lambda: pending_view(1))

        assert registry.peek("visitor:a", "approved") is None
        assert registry.peek("user:1", "review") is not None
        assert len(registry) == 2
        assert registry.get("visitor:a", "approved", lambda: pending_view(1)) is not old

    def test_explicit_sweep(self):
        """Test sweep reports how many entries went"""
        clock = FakeClock()
        registry = StateRegistry(max_age=10, idle_seconds=60, clock=clock)
        registry.get("user:1", "review", lambda: pending_view(1))
        registry.get("user:2", "review", lambda: pending_view(1))
        clock.now += 61
        assert registry.sweep() == 2
        assert len(registry) == 0
