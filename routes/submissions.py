"""Submission blueprint: institution and guest uploads, my submissions, and the admin review queue."""
from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for
from flask_login import current_user, login_required
from flask_wtf import FlaskForm
from wtforms import StringField, SubmitField, TextAreaField
from wtforms.validators import Email, Length, Optional

from extensions import nest
from models import Circular
from utils.api_client import APIError
from utils.dashboard_feed import APPROVED_VIEW, OVERVIEW_VIEW, REVIEW_VIEW, SUBMISSIONS_VIEW
from utils.decorators import roles_required
from utils.preview import open_preview
from utils.reconciliation import filter_circulars
from utils.review_workflow import ReviewActionError, approve, can_delete, delete_submission, reject
from utils.security import clean_text
from utils.upload_utils import submit

from .circulars import CircularUploadForm, back_to, find_record, pdf_response

submissions_bp = Blueprint("submissions", __name__)


class GuestUploadForm(CircularUploadForm):
    guest_name = StringField("Your Name", validators=[Optional(), Length(max=150)])
    guest_email = StringField("Your Email", validators=[Optional(), Email(), Length(max=255)])


class ReviewForm(FlaskForm):
    review_notes = TextAreaField("Review Notes", validators=[Optional(), Length(max=1000)])
    submit = SubmitField("Submit")


class DeleteForm(FlaskForm):
    submit = SubmitField("Delete")


def _flash_form_errors(form) -> None:
    for field_errors in form.errors.values():
        for error in field_errors:
            flash(error, "danger")


@submissions_bp.route("/upload", methods=["GET", "POST"])
@login_required
def upload():
    if current_user.is_admin:
        return redirect(url_for("circulars.upload"))

    form = CircularUploadForm()
    if form.validate_on_submit():
        try:
            submit(nest.api, form.to_submission(), "user")
        except APIError as exc:
            flash(exc.message, "danger")
        else:
            nest.invalidate(SUBMISSIONS_VIEW)
            flash("Circular submitted for review. An administrator will approve it shortly.", "success")
            return redirect(url_for("submissions.upload"))
    elif request.method == "POST":
        _flash_form_errors(form)

    view = nest.state(SUBMISSIONS_VIEW).current()
    for error in view.errors.values():
        flash(f"Could not load your submissions: {error}", "warning")
    return render_template(
        "submissions/upload.html",
        form=form,
        delete_form=DeleteForm(),
        view=view,
        can_delete=can_delete,
        page_title="Submit Circular",
    )


@submissions_bp.route("/submissions/<record_id>/delete", methods=["POST"])
@login_required
def delete(record_id):
    state = nest.state(SUBMISSIONS_VIEW)
    state.current()
    record = state.find(record_id)
    if record is None:
        flash("Submission not found. It may already have been reviewed.", "warning")
        return back_to("submissions.upload")
    try:
        delete_submission(nest.api, state, record, current_user)
    except ReviewActionError as exc:
        flash(str(exc), "warning")
    except APIError as exc:
        flash(exc.message, "danger")
    else:
        flash("Submission deleted.", "success")
    return back_to("submissions.upload")


@submissions_bp.route("/guest-upload", methods=["GET", "POST"])
def guest_upload():
    form = GuestUploadForm()
    if form.validate_on_submit():
        submission = form.to_submission(guest_name=form.guest_name.data, guest_email=form.guest_email.data)
        try:
            submit(nest.api, submission, "guest")
        except APIError as exc:
            flash(exc.message, "danger")
        else:
            flash("Thank you! Your circular has been submitted and will be published after review.", "success")
            return redirect(url_for("submissions.guest_upload"))
    elif request.method == "POST":
        _flash_form_errors(form)
    return render_template("submissions/guest_upload.html", form=form, page_title="Guest Upload")


@submissions_bp.route("/admin/review")
@roles_required("admin")
def review_queue():
    state = nest.state(REVIEW_VIEW)
    view = state.current()
    for error in view.errors.values():
        flash(f"Could not load pending submissions: {error}", "warning")
    query = (request.args.get("search") or "").strip()
    records = filter_circulars(view.buckets.pending, query=query)
    return render_template(
        "submissions/review.html",
        records=records,
        form=ReviewForm(),
        search=query,
        refreshed_at=state.refreshed_at,
        refresh_view=REVIEW_VIEW,
        page_title="Review Submissions",
    )


def _review(record_id: str, action, success_message: str):
    form = ReviewForm()
    if not form.validate_on_submit():
        _flash_form_errors(form)
        return back_to("submissions.review_queue")
    notes = clean_text(form.review_notes.data) or None
    try:
        action(nest.api, nest.state(REVIEW_VIEW), record_id, notes)
    except APIError as exc:
        flash(exc.message, "danger")
    else:
        nest.invalidate(OVERVIEW_VIEW, APPROVED_VIEW)
        flash(success_message, "success")
    return back_to("submissions.review_queue")


@submissions_bp.route("/admin/review/<record_id>/approve", methods=["POST"])
@roles_required("admin")
def approve_submission(record_id):
    return _review(record_id, approve, "Circular approved and published.")


@submissions_bp.route("/admin/review/<record_id>/reject", methods=["POST"])
@roles_required("admin")
def reject_submission(record_id):
    return _review(record_id, reject, "Submission rejected.")


@submissions_bp.route("/admin/review/<record_id>/delete", methods=["POST"])
@roles_required("admin")
def delete_pending(record_id):
    state = nest.state(REVIEW_VIEW)
    record = state.find(record_id) or Circular(id=record_id, status="pending")
    try:
        delete_submission(nest.api, state, record, current_user)
    except (ReviewActionError, APIError) as exc:
        flash(getattr(exc, "message", str(exc)), "danger")
    else:
        nest.invalidate(OVERVIEW_VIEW)
        flash("Submission deleted.", "success")
    return back_to("submissions.review_queue")


@submissions_bp.route("/admin/review/<record_id>/file")
@roles_required("admin")
def pending_file(record_id):
    record = find_record(record_id, REVIEW_VIEW, OVERVIEW_VIEW)
    try:
        content = nest.api.download_pending_file(record_id)
    except APIError as exc:
        flash(f"Failed to download PDF: {exc.message}", "danger")
        return back_to("submissions.review_queue")
    return pdf_response(content, record.download_name if record else "circular.pdf", as_attachment=True)


@submissions_bp.route("/admin/review/<record_id>/preview")
@roles_required("admin")
def pending_preview(record_id):
    record = find_record(record_id, REVIEW_VIEW, OVERVIEW_VIEW) or Circular(id=record_id, status="pending")
    result = open_preview(
        nest.api,
        nest.previews,
        nest.owner_key(),
        record,
        source="pending",
        blob_url=lambda handle: url_for("circulars.preview_blob", handle=handle),
        download_url=url_for("submissions.pending_file", record_id=record.id),
        load_timeout_seconds=current_app.config.get("PREVIEW_LOAD_TIMEOUT_SECONDS", 7),
    )
    return render_template(
        "circulars/preview.html",
        record=record,
        preview=result,
        back_url=url_for("submissions.review_queue"),
        page_title=record.title,
    )
