"""Circular archive blueprint: admin uploads, status overrides, downloads and previews."""
from io import BytesIO

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, send_file, url_for
from flask_login import current_user
from flask_wtf import FlaskForm
from flask_wtf.file import FileField
from wtforms import DateField, SelectField, StringField, SubmitField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional, ValidationError

from extensions import nest
from models import CATEGORIES, CIRCULAR_STATUSES, DEFAULT_CATEGORY, Circular
from utils.api_client import APIError
from utils.dashboard_feed import APPROVED_VIEW, OVERVIEW_VIEW, REVIEW_VIEW, SUBMISSIONS_VIEW
from utils.decorators import roles_required
from utils.preview import close_preview, open_preview
from utils.review_workflow import ReviewActionError, delete_circular, delete_submission, set_record_status
from utils.security import clean_text, is_safe_redirect_url
from utils.upload_utils import (
    PDF_MIME_TYPE,
    UploadValidationError,
    build_submission,
    submit,
    validate_pdf_upload,
)

circulars_bp = Blueprint("circulars", __name__)

CATEGORY_CHOICES: list[tuple[str, str]] = [(name, name) for name in CATEGORIES]
STATUS_CHOICES: list[tuple[str, str]] = [(name, name.title()) for name in CIRCULAR_STATUSES]


class CircularUploadForm(FlaskForm):
    title = StringField("Title", validators=[DataRequired(), Length(max=200)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=2000)])
    category = SelectField("Category", choices=CATEGORY_CHOICES, default=DEFAULT_CATEGORY)
    order_date = DateField("Order Date", validators=[Optional()])
    file = FileField("PDF File")
    submit = SubmitField("Upload")

    pdf: tuple[bytes, str] | None = None

    def validate_file(self, field):
        try:
            self.pdf = validate_pdf_upload(field.data, current_app.config.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
        except UploadValidationError as exc:
            raise ValidationError(str(exc)) from exc

    def to_submission(self, **extra):
        content, file_name = self.pdf
        return build_submission(
            content,
            file_name,
            title=self.title.data,
            description=self.description.data,
            category=self.category.data,
            order_date=self.order_date.data,
            **extra,
        )


class StatusForm(FlaskForm):
    status = SelectField("Status", choices=STATUS_CHOICES, validators=[DataRequired()])
    review_notes = TextAreaField("Notes", validators=[Optional(), Length(max=1000)])
    submit = SubmitField("Update Status")


def find_record(record_id: str, *views: str) -> Circular | None:
    """Look ``record_id`` up in this session's cached views without touching the network."""
    owner = nest.state_owner()
    for view in views or (OVERVIEW_VIEW, APPROVED_VIEW, SUBMISSIONS_VIEW, REVIEW_VIEW):
        state = nest.states.peek(owner, view)
        record = state.find(record_id) if state else None
        if record is not None:
            return record
    return None


def back_to(default_endpoint: str, **values):
    target = request.form.get("next") or request.args.get("next")
    if target and is_safe_redirect_url(target):
        return redirect(target)
    return redirect(url_for(default_endpoint, **values))


def pdf_response(content: bytes, file_name: str, as_attachment: bool):
    return send_file(
        BytesIO(content),
        mimetype=PDF_MIME_TYPE,
        as_attachment=as_attachment,
        download_name=file_name,
        max_age=0,
    )


@circulars_bp.route("/circulars/upload", methods=["GET", "POST"])
@roles_required("admin")
def upload():
    form = CircularUploadForm()
    if form.validate_on_submit():
        try:
            submit(nest.api, form.to_submission(default_order_date=True), "admin")
        except APIError as exc:
            flash(exc.message, "danger")
        else:
            nest.invalidate(OVERVIEW_VIEW, APPROVED_VIEW)
            flash("Circular uploaded and published.", "success")
            return redirect(url_for("main.circulars"))
    elif request.method == "POST":
        for error in form.file.errors:
            flash(error, "danger")
    return render_template("circulars/upload.html", form=form, page_title="Upload Circular")


@circulars_bp.route("/circulars/<record_id>/status", methods=["POST"])
@roles_required("admin")
def update_status(record_id):
    form = StatusForm()
    if not form.validate_on_submit():
        flash("Choose a valid status.", "warning")
        return back_to("main.circulars")
    state = nest.state(OVERVIEW_VIEW)
    state.current()
    record = state.find(record_id) or Circular(id=record_id, status="approved")
    try:
        set_record_status(nest.api, state, record, form.status.data, clean_text(form.review_notes.data) or None)
    except (APIError, ReviewActionError) as exc:
        flash(getattr(exc, "message", str(exc)), "danger")
    else:
        nest.invalidate(OVERVIEW_VIEW, APPROVED_VIEW, REVIEW_VIEW)
        flash(f"Circular marked as {form.status.data}.", "success")
    return back_to("main.circulars")


@circulars_bp.route("/circulars/<record_id>/delete", methods=["POST"])
@roles_required("admin")
def delete(record_id):
    state = nest.state(OVERVIEW_VIEW)
    record = state.find(record_id)
    try:
        if record is not None and record.is_pending:
            delete_submission(nest.api, state, record, current_user)
        else:
            delete_circular(nest.api, state, record_id)
    except ReviewActionError as exc:
        flash(str(exc), "warning")
    except APIError as exc:
        flash(exc.message, "danger")
    else:
        nest.invalidate(APPROVED_VIEW, REVIEW_VIEW)
        flash("Circular deleted.", "success")
    return back_to("main.circulars")


@circulars_bp.route("/circulars/<record_id>/download")
def download(record_id):
    record = find_record(record_id)
    try:
        content = nest.api.download_circular(record_id)
    except APIError as exc:
        flash(f"Failed to download PDF: {exc.message}", "danger")
        return back_to("main.circulars")
    current_app.logger.info("circular_downloaded", extra={"record_id": record_id, "bytes": len(content)})
    return pdf_response(content, record.download_name if record else "circular.pdf", as_attachment=True)


@circulars_bp.route("/circulars/<record_id>/preview")
def preview(record_id):
    record = find_record(record_id)
    if record is None:
        try:
            body = nest.api.get_circular(record_id)
            record = Circular.from_api(body.get("circular") or body.get("data") or body)
        except APIError as exc:
            flash(exc.message, "danger")
            return redirect(url_for("main.circulars"))
        except ValueError:
            abort(404)

    result = open_preview(
        nest.api,
        nest.previews,
        nest.owner_key(),
        record,
        source="circular",
        blob_url=lambda handle: url_for("circulars.preview_blob", handle=handle),
        download_url=url_for("circulars.download", record_id=record.id),
        load_timeout_seconds=current_app.config.get("PREVIEW_LOAD_TIMEOUT_SECONDS", 7),
    )
    return render_template(
        "circulars/preview.html",
        record=record,
        preview=result,
        back_url=url_for("main.circulars"),
        page_title=record.title,
    )


@circulars_bp.route("/preview/blob/<handle>")
def preview_blob(handle):
    blob = nest.previews.get(handle, owner=nest.owner_key())
    if blob is None:
        abort(404)
    return pdf_response(blob.content, blob.file_name, as_attachment=False)


@circulars_bp.route("/preview/close", methods=["POST"])
def preview_close():
    close_preview(nest.previews, nest.owner_key())
    return back_to("main.circulars")
