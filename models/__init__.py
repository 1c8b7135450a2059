"""Domain records exchanged with the Circular Nest API, normalised to one canonical shape."""
from dataclasses import asdict, dataclass
from typing import Any, Mapping

from flask_login import UserMixin


CIRCULAR_STATUSES: tuple[str, ...] = (
	"pending",
	"approved",
	"rejected",
)

CATEGORIES: tuple[str, ...] = (
	"Education",
	"Fire Department",
	"PWD - Building Safety",
	"Transport",
	"Land Record",
	"Revenue",
)

DEFAULT_CATEGORY = "Education"

USER_ROLES: tuple[str, ...] = (
	"admin",
	"user",
)

PROFILE_FIELDS: tuple[str, ...] = (
	"institution_name",
	"contact_person",
	"phone",
	"address",
	"city",
	"state",
	"pincode",
)

# snake_case attribute -> camelCase wire key
_WIRE_KEYS: dict[str, str] = {
	"institution_name": "institutionName",
	"contact_person": "contactPerson",
	"phone": "phone",
	"address": "address",
	"city": "city",
	"state": "state",
	"pincode": "pincode",
	"created_at": "createdAt",
}


def _first(payload: Mapping[str, Any], *keys: str, default=None):
	for key in keys:
		value = payload.get(key)
		if value not in (None, ""):
			return value
	return default


def _reference_id(raw) -> str | None:
	"""Collapse a nested `{_id, email}` reference or a plain identifier to the identifier."""
	if raw is None or raw == "":
		return None
	if isinstance(raw, Mapping):
		ref = _first(raw, "_id", "id")
		return str(ref) if ref is not None else None
	return str(raw)


def normalize_status(raw) -> str | None:
	"""Lower-case a wire status; anything outside the known set is treated as legacy (no status)."""
	if raw is None:
		return None
	value = str(raw).strip().lower()
	return value if value in CIRCULAR_STATUSES else None


def _coerce_size(raw) -> int | None:
	if raw is None or raw == "":
		return None
	try:
		return int(float(raw))
	except (TypeError, ValueError):
		return None


def _coerce_flag(raw) -> bool | None:
	if raw is None:
		return None
	if isinstance(raw, str):
		return raw.strip().lower() in {"1", "true", "yes"}
	return bool(raw)


@dataclass
class Circular:
	id: str
	title: str = "Untitled"
	description: str = ""
	category: str = DEFAULT_CATEGORY
	order_date: str | None = None
	file_name: str | None = None
	file_size: int | None = None
	file_url: str | None = None
	status: str | None = None
	review_notes: str | None = None
	reviewed_by: str | None = None
	reviewed_at: str | None = None
	uploaded_by: str | None = None
	uploader_email: str | None = None
	guest_name: str | None = None
	guest_email: str | None = None
	is_published: bool | None = None
	created_at: str | None = None
	updated_at: str | None = None

	@classmethod
	def from_api(cls, payload: Mapping[str, Any], default_status: str | None = None) -> "Circular":
		record_id = _reference_id(_first(payload, "_id", "id"))
		if not record_id:
			raise ValueError("Record payload has no identifier")

		uploader = payload.get("uploadedBy")
		uploader_email = uploader.get("email") if isinstance(uploader, Mapping) else payload.get("uploadedByEmail")
		status = normalize_status(payload.get("status"))
		if status is None and default_status:
			status = normalize_status(default_status)

		return cls(
			id=record_id,
			title=str(_first(payload, "title", default="Untitled")),
			description=str(_first(payload, "description", default="")),
			category=str(_first(payload, "category", default=DEFAULT_CATEGORY)),
			order_date=_first(payload, "orderDate"),
			file_name=_first(payload, "fileName"),
			file_size=_coerce_size(payload.get("fileSize")),
			file_url=_first(payload, "fileUrl", "pdfUrl"),
			status=status,
			review_notes=_first(payload, "reviewNotes", "adminNotes"),
			reviewed_by=_reference_id(payload.get("reviewedBy")),
			reviewed_at=_first(payload, "reviewedAt"),
			uploaded_by=_reference_id(uploader),
			uploader_email=uploader_email or None,
			guest_name=_first(payload, "guestName"),
			guest_email=_first(payload, "guestEmail"),
			is_published=_coerce_flag(payload.get("isPublished")),
			created_at=_first(payload, "createdAt"),
			updated_at=_first(payload, "updatedAt"),
		)

	@property
	def effective_status(self) -> str:
		# Legacy records predate the status field and were published on upload.
		return self.status or "approved"

	@property
	def is_pending(self) -> bool:
		return self.status == "pending"

	@property
	def is_guest_submission(self) -> bool:
		return self.uploaded_by is None

	@property
	def has_public_url(self) -> bool:
		return bool(self.file_url) and str(self.file_url).startswith(("http://", "https://"))

	@property
	def download_name(self) -> str:
		return self.file_name or "circular.pdf"

	@property
	def uploader_label(self) -> str:
		if self.uploader_email:
			return self.uploader_email
		if self.guest_name:
			label = f"{self.guest_name} (Guest)"
			if self.guest_email:
				label = f"{label} - {self.guest_email}"
			return label
		if self.uploaded_by:
			return self.uploaded_by
		return "Guest User"

	def matches(self, query: str) -> bool:
		needle = query.strip().lower()
		if not needle:
			return True
		return needle in self.title.lower() or needle in (self.description or "").lower()

	def public_payload(self) -> dict:
		payload = asdict(self)
		payload["effective_status"] = self.effective_status
		payload["uploader_label"] = self.uploader_label
		return payload


@dataclass
class SessionUser(UserMixin):
	id: str
	email: str
	role: str = "user"
	institution_name: str | None = None
	contact_person: str | None = None
	phone: str | None = None
	address: str | None = None
	city: str | None = None
	state: str | None = None
	pincode: str | None = None
	created_at: str | None = None

	@classmethod
	def from_api(cls, payload: Mapping[str, Any]) -> "SessionUser":
		user_id = _reference_id(_first(payload, "id", "_id"))
		if not user_id:
			raise ValueError("User payload has no identifier")
		role = str(payload.get("role") or "user").lower()
		extras = {attr: payload.get(wire) for attr, wire in _WIRE_KEYS.items()}
		return cls(
			id=user_id,
			email=str(payload.get("email") or ""),
			role=role if role in USER_ROLES else "user",
			**extras,
		)

	@classmethod
	def from_session(cls, data: Mapping[str, Any]) -> "SessionUser":
		return cls(**{key: data.get(key) for key in cls.__dataclass_fields__ if key in data})

	def to_session(self) -> dict:
		return asdict(self)

	@property
	def is_admin(self) -> bool:
		return self.role == "admin"

	@property
	def display_name(self) -> str:
		return self.institution_name or self.email


def profile_to_wire(data: Mapping[str, Any]) -> dict:
	"""Translate profile form fields to the API's camelCase keys, skipping absent fields."""
	wire: dict[str, Any] = {}
	for attr in PROFILE_FIELDS:
		value = data.get(attr)
		if value is None:
			continue
		wire[_WIRE_KEYS[attr]] = value
	return wire
