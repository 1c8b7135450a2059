"""Blueprint registration, public routes, and dashboards."""
from datetime import datetime

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, session, url_for
from flask_login import current_user, login_required
from flask_wtf import FlaskForm
from wtforms import StringField, SubmitField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional, Regexp

from extensions import nest
from models import CATEGORIES, PROFILE_FIELDS
from utils.api_client import APIError
from utils.auth_session import AuthError
from utils.dashboard_feed import (
    ADMIN_VIEWS,
    APPROVED_VIEW,
    OVERVIEW_VIEW,
    SUBMISSIONS_VIEW,
    VIEWS,
    fetch_circulars,
    load_user_dashboard,
)
from utils.reconciliation import category_counts, filter_circulars
from utils.security import is_safe_redirect_url
from utils.upload_utils import format_file_size
from .auth import auth_bp
from .circulars import StatusForm, circulars_bp
from .submissions import DeleteForm, submissions_bp

main_bp = Blueprint("main", __name__)

STATUS_BADGES = {
    "pending": "warning",
    "approved": "success",
    "rejected": "danger",
}


class ProfileForm(FlaskForm):
    institution_name = StringField("Institution Name", validators=[DataRequired(), Length(max=200)])
    contact_person = StringField("Contact Person", validators=[Optional(), Length(max=150)])
    phone = StringField("Phone", validators=[Optional(), Regexp(r"^[0-9+\-\s]{7,20}$", message="Enter a valid phone number.")])
    address = TextAreaField("Address", validators=[Optional(), Length(max=500)])
    city = StringField("City", validators=[Optional(), Length(max=100)])
    state = StringField("State", validators=[Optional(), Length(max=100)])
    pincode = StringField("Pincode", validators=[Optional(), Regexp(r"^[0-9]{6}$", message="Pincode must be 6 digits.")])
    submit = SubmitField("Save Profile")


@main_bp.app_context_processor
def inject_view_helpers():
    return {
        "categories": CATEGORIES,
        "status_badges": STATUS_BADGES,
        "format_file_size": format_file_size,
        "auto_refresh_enabled": session.get("auto_refresh", True),
    }


@main_bp.app_template_filter("timestamp")
def format_timestamp(value) -> str:
    if not value:
        return ""
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value).strftime("%H:%M:%S")
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).strftime("%d %b %Y")
    except ValueError:
        return str(value)


def _flash_view_errors(view, label: str) -> None:
    for source, error in sorted(view.errors.items()):
        flash(f"Could not load {source} {label}: {error}", "warning")


@main_bp.route("/")
def index():
    limit = int(current_app.config.get("LANDING_CIRCULAR_LIMIT", 6))
    result = fetch_circulars(nest.api, "approved", limit)
    if not result.success:
        flash(f"Failed to load circulars: {result.error}", "danger")
    return render_template(
        "home/index.html",
        circulars=result.records[:limit],
        page_title="Circular Nest",
    )


@main_bp.route("/dashboard")
@login_required
def dashboard():
    if current_user.is_admin:
        return admin_dashboard()

    limit = nest.list_limit
    approved, submissions = load_user_dashboard(nest.api, limit)
    if not approved.success:
        flash(f"Failed to load circulars: {approved.error}", "danger")
    _flash_view_errors(submissions, "records")

    query = (request.args.get("search") or "").strip()
    category = request.args.get("category") or None
    circulars = filter_circulars(approved.records, query=query, category=category, approved_only=True)
    current_app.logger.info(
        "user_dashboard_compiled",
        extra={
            "user_id": current_user.get_id(),
            "circulars": len(circulars),
            **submissions.buckets.counts(),
        },
    )
    return render_template(
        "dashboard/user.html",
        circulars=circulars,
        submissions=submissions,
        counts=category_counts(approved.records),
        search=query,
        category=category or "",
        refresh_view=None,
        page_title="Dashboard",
    )


def admin_dashboard():
    state = nest.state(OVERVIEW_VIEW)
    view = state.current()
    _flash_view_errors(view, "circulars")
    return render_template(
        "dashboard/admin.html",
        view=view,
        counts=view.buckets.counts(),
        recent=view.records[:10],
        refreshed_at=state.refreshed_at,
        refresh_view=OVERVIEW_VIEW,
        page_title="Admin Dashboard",
    )


@main_bp.route("/circulars")
def circulars():
    query = (request.args.get("search") or "").strip()
    category = request.args.get("category") or None
    is_admin = current_user.is_authenticated and current_user.is_admin

    view_name = OVERVIEW_VIEW if is_admin else APPROVED_VIEW
    state = nest.state(view_name)
    view = state.current()
    _flash_view_errors(view, "circulars")

    status = request.args.get("status") if is_admin else None
    if status == "pending":
        pool = view.buckets.pending
    elif status == "rejected":
        pool = view.buckets.rejected
    elif status == "approved" or not is_admin:
        pool = view.buckets.approved
    else:
        pool = view.records

    records = filter_circulars(pool, query=query, category=category, approved_only=not is_admin)
    return render_template(
        "circulars/index.html",
        circulars=records,
        counts=category_counts(pool),
        bucket_counts=view.buckets.counts(),
        search=query,
        category=category or "",
        status=status or "",
        is_admin=is_admin,
        status_form=StatusForm() if is_admin else None,
        delete_form=DeleteForm(),
        refreshed_at=state.refreshed_at,
        refresh_view=view_name,
        page_title="Circulars",
    )


@main_bp.route("/profile", methods=["GET", "POST"])
@login_required
def profile():
    form = ProfileForm(obj=current_user)
    if form.validate_on_submit():
        try:
            nest.auth.update_profile(
                **{name: (getattr(form, name).data or "").strip() for name in PROFILE_FIELDS}
            )
        except (APIError, AuthError) as exc:
            flash(getattr(exc, "message", str(exc)), "danger")
        else:
            flash("Profile updated.", "success")
            return redirect(url_for("main.profile"))

    view = nest.state(SUBMISSIONS_VIEW).current()
    _flash_view_errors(view, "records")
    published = [r for r in view.buckets.approved if r.is_published is not False]
    return render_template(
        "profile.html",
        form=form,
        published=published,
        counts=view.buckets.counts(),
        page_title="Profile",
    )


@main_bp.route("/refresh/<view>", methods=["POST"])
def refresh(view):
    if view not in VIEWS:
        abort(404)
    if view in ADMIN_VIEWS and not (current_user.is_authenticated and current_user.is_admin):
        abort(403)
    if view == SUBMISSIONS_VIEW and not current_user.is_authenticated:
        abort(403)
    nest.state(view).refresh()
    target = request.form.get("next")
    return redirect(target if target and is_safe_redirect_url(target) else url_for("main.dashboard"))


@main_bp.route("/auto-refresh", methods=["POST"])
def toggle_auto_refresh():
    session["auto_refresh"] = not session.get("auto_refresh", True)
    flash(f"Auto-refresh {'enabled' if session['auto_refresh'] else 'paused'}.", "info")
    target = request.referrer
    return redirect(target if target and is_safe_redirect_url(target) else url_for("main.index"))


__all__ = ["main_bp", "auth_bp", "circulars_bp", "submissions_bp"]
