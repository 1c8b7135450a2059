"""PDF upload validation and multipart submission for the three upload paths."""
import logging
import os
from dataclasses import dataclass
from datetime import date
from typing import Dict, Tuple

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from models import CATEGORIES, DEFAULT_CATEGORY
from utils.api_client import CircularNestAPI
from utils.security import clean_text

logger = logging.getLogger("app.upload_utils")

PDF_MIME_TYPE = "application/pdf"
ALLOWED_PDF_EXTENSIONS = {"pdf"}
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10 MiB

SUBMISSION_VARIANTS = ("admin", "user", "guest")


class UploadValidationError(ValueError):
    """Raised when a file fails the local gate; no request has been made."""


def _fail_if(condition: bool, message: str) -> None:
    if condition:
        logger.info("upload_rejected", extra={"reason": message})
        raise UploadValidationError(message)


def is_pdf(filename: str, content_type: str | None) -> bool:
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime == PDF_MIME_TYPE:
        return True
    return "." in filename and filename.rsplit(".", 1)[1].lower() in ALLOWED_PDF_EXTENSIONS


def validate_pdf_upload(file: FileStorage, max_bytes: int = DEFAULT_MAX_UPLOAD_BYTES) -> Tuple[bytes, str]:
    """Return ``(content, safe_filename)`` or raise :class:`UploadValidationError`."""
    _fail_if(not file or not file.filename, "Please select a PDF file")
    filename = secure_filename(file.filename or "") or "circular.pdf"
    _fail_if(not is_pdf(file.filename or "", file.mimetype), "Invalid file type. Only PDF files are allowed.")

    file.stream.seek(0, os.SEEK_END)
    size = file.stream.tell()
    file.stream.seek(0)
    _fail_if(size == 0, "The selected file is empty")
    _fail_if(size > max_bytes, f"File size must be less than {max_bytes // (1024 * 1024)}MB")

    content = file.read()
    _fail_if(len(content) > max_bytes, f"File size must be less than {max_bytes // (1024 * 1024)}MB")
    file.stream.seek(0)
    return content, filename


def format_file_size(size) -> str:
    try:
        num = int(size or 0)
    except (TypeError, ValueError):
        num = 0
    if num <= 0:
        return "0 B"
    if num < 1024:
        return f"{num} B"
    if num < 1024 * 1024:
        return f"{num / 1024:.1f} KB"
    return f"{num / (1024 * 1024):.1f} MB"


@dataclass
class CircularSubmission:
    title: str
    category: str
    content: bytes
    file_name: str
    description: str = ""
    order_date: str = ""
    guest_name: str = ""
    guest_email: str = ""

    def form_fields(self, variant: str) -> Dict[str, str]:
        fields = {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "orderDate": self.order_date,
        }
        if variant == "admin":
            fields["status"] = "approved"
        elif variant == "guest":
            fields["guestName"] = self.guest_name or "Anonymous"
            fields["guestEmail"] = self.guest_email
        return fields

    def files(self) -> Dict[str, tuple]:
        return {"file": (self.file_name, self.content, PDF_MIME_TYPE)}


def build_submission(
    content: bytes,
    file_name: str,
    *,
    title: str | None = None,
    description: str | None = None,
    category: str | None = None,
    order_date: date | str | None = None,
    guest_name: str | None = None,
    guest_email: str | None = None,
    default_order_date: bool = False,
) -> CircularSubmission:
    if isinstance(order_date, date):
        order_date = order_date.isoformat()
    if not order_date and default_order_date:
        order_date = date.today().isoformat()
    chosen_category = category if category in CATEGORIES else DEFAULT_CATEGORY
    return CircularSubmission(
        title=clean_text(title) or "Untitled",
        description=clean_text(description),
        category=chosen_category,
        content=content,
        file_name=file_name,
        order_date=order_date or "",
        guest_name=clean_text(guest_name) or "Anonymous",
        guest_email=(guest_email or "").strip(),
    )


def submit(api: CircularNestAPI, submission: CircularSubmission, variant: str) -> dict:
    """Send one validated submission down the endpoint that matches ``variant``."""
    if variant not in SUBMISSION_VARIANTS:
        raise ValueError(f"Unknown submission variant: {variant}")
    fields = submission.form_fields(variant)
    files = submission.files()
    if variant == "admin":
        body = api.upload_circular(fields, files)
    elif variant == "user":
        body = api.submit_pending_upload(fields, files)
    else:
        body = api.submit_guest_upload(fields, files)
    logger.info(
        "circular_submitted",
        extra={"variant": variant, "category": submission.category, "bytes": len(submission.content)},
    )
    return body
