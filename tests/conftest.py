"""
Shared fixtures: an in-memory Circular Nest backend and a Flask app wired to it.

The fake backend stands in for ``requests.Session`` and answers the same
REST contract the real API exposes, so route tests exercise the full client
stack without any network access.
"""
import itertools
import json
import re
from io import BytesIO
from urllib.parse import urlsplit

import pytest

from app import create_app

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"

ADMIN_EMAIL = "admin@circularnest.in"
ADMIN_PASSWORD = "admin-pass"
USER_EMAIL = "office@greenvalley.edu.in"
USER_PASSWORD = "school-pass"


class FakeResponse:
    def __init__(self, status_code=200, body=None, content=b"", headers=None, text=None):
        self.status_code = status_code
        self._body = body
        self.headers = headers or {"Content-Type": "application/json"}
        self.content = content
        if text is not None:
            self.text = text
        elif body is not None:
            self.text = json.dumps(body)
        else:
            self.text = ""

    def json(self):
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


def json_response(status_code, body):
    return FakeResponse(status_code=status_code, body=body)


def pdf_response(content):
    return FakeResponse(status_code=200, content=content, headers={"Content-Type": "application/pdf"})


class FakeBackend:
    """In-memory double of the Circular Nest REST API."""

    def __init__(self):
        self.calls = []
        self.users = {}
        self.tokens = {}
        self.circulars = {}
        self.pending = {}
        self.files = {}
        self.failures = {}
        self._ids = itertools.count(1)

    # Seeding helpers

    def next_id(self, prefix="rec"):
        return f"{prefix}{next(self._ids):04d}"

    def add_user(self, email, password, role="user", **profile):
        user = {"_id": self.next_id("usr"), "email": email, "role": role, **profile}
        self.users[email] = {"password": password, "user": user}
        return user

    def issue_token(self, email):
        token = f"token-{self.users[email]['user']['_id']}"
        self.tokens[token] = email
        return token

    def add_circular(self, title, status="approved", category="Education", **extra):
        record = {
            "_id": extra.pop("_id", None) or self.next_id("cir"),
            "title": title,
            "description": extra.pop("description", ""),
            "category": category,
            "fileName": extra.pop("fileName", f"{title.lower().replace(' ', '-')}.pdf"),
            "fileSize": len(PDF_BYTES),
            "createdAt": "2026-01-05T10:00:00Z",
            **extra,
        }
        if status is not None:
            record["status"] = status
        self.circulars[record["_id"]] = record
        self.files[record["_id"]] = PDF_BYTES
        return record

    def add_pending(self, title, status="pending", uploaded_by=None, **extra):
        record = {
            "_id": extra.pop("_id", None) or self.next_id("pnd"),
            "title": title,
            "description": extra.pop("description", ""),
            "category": extra.pop("category", "Education"),
            "fileName": extra.pop("fileName", "submission.pdf"),
            "fileSize": len(PDF_BYTES),
            "status": status,
            "createdAt": "2026-01-06T09:30:00Z",
            **extra,
        }
        if uploaded_by is not None:
            record["uploadedBy"] = {"_id": uploaded_by["_id"], "email": uploaded_by["email"]}
        self.pending[record["_id"]] = record
        self.files[record["_id"]] = PDF_BYTES
        return record

    def fail(self, method, path, status_code=500, body=None):
        """Make every ``method`` call under ``path`` answer with an error."""
        self.failures[(method, path)] = (status_code, body or {"success": False, "message": "Internal error"})

    def requests_to(self, method, path):
        return [call for call in self.calls if call[0] == method and call[1] == path]

    # requests.Session surface

    def request(self, method, url, headers=None, timeout=None, params=None, json=None, data=None, files=None, stream=None):
        path = urlsplit(url).path
        self.calls.append((method, path, dict(params or {})))
        for (fail_method, fail_path), (status_code, body) in self.failures.items():
            if fail_method == method and path.startswith(fail_path):
                return json_response(status_code, body)

        auth = (headers or {}).get("Authorization", "")
        email = self.tokens.get(auth[len("Bearer "):]) if auth.startswith("Bearer ") else None
        user = self.users[email]["user"] if email else None
        return self._dispatch(method, path, user, params or {}, json or {}, data or {}, files or {})

    def _dispatch(self, method, path, user, params, body, form, files):
        if path == "/api/health":
            return json_response(200, {"success": True, "status": "ok"})
        if path == "/api/auth/login" and method == "POST":
            account = self.users.get(body.get("email"))
            if not account or account["password"] != body.get("password"):
                return json_response(401, {"success": False, "message": "Invalid credentials"})
            return json_response(200, {"success": True, "token": self.issue_token(body["email"]), "user": account["user"]})
        if path == "/api/auth/signup" and method == "POST":
            if body.get("role") == "admin":
                return json_response(403, {"success": False, "message": "Admin registration is not allowed"})
            if body.get("email") in self.users:
                return json_response(400, {"success": False, "message": "User already exists"})
            profile = {k: v for k, v in body.items() if k not in ("email", "password", "role")}
            self.add_user(body["email"], body["password"], role="user", **profile)
            return json_response(201, {"success": True, "message": "User registered"})
        if path == "/api/pending/guest-upload" and method == "POST":
            return self._create_pending(form, files, None)

        public_read = method == "GET" and re.fullmatch(r"/api/circulars(?:/[^/]+(?:/download)?)?", path)
        if user is None and not public_read:
            return json_response(401, {"success": False, "message": "Not authorized, token failed"})

        if path == "/api/auth/me":
            return json_response(200, {"success": True, "user": user})
        if path == "/api/auth/profile" and method == "PUT":
            user.update(body)
            return json_response(200, {"success": True, "user": user})

        if path == "/api/circulars" and method == "GET":
            return json_response(200, {"success": True, "circulars": self._list_circulars(params)})
        if path == "/api/circulars/upload" and method == "POST":
            if user["role"] != "admin":
                return json_response(403, {"success": False, "message": "Admin only"})
            record = self.add_circular(form.get("title"), status=form.get("status", "approved"), category=form.get("category"))
            self.files[record["_id"]] = files["file"][1]
            return json_response(201, {"success": True, "circular": record})
        if path == "/api/pending/upload" and method == "POST":
            return self._create_pending(form, files, user)
        if path == "/api/pending" and method == "GET":
            if user["role"] != "admin":
                return json_response(403, {"success": False, "message": "Admin only"})
            status = params.get("status")
            records = [r for r in self.pending.values() if not status or r["status"] == status]
            return json_response(200, {"success": True, "pendingUploads": records})
        if path == "/api/pending/my-submissions":
            mine = [r for r in self.pending.values() if (r.get("uploadedBy") or {}).get("_id") == user["_id"]]
            return json_response(200, {"success": True, "submissions": mine})

        match = re.fullmatch(r"/api/(circulars|pending)/([^/]+)(?:/(\w+))?", path)
        if match:
            return self._record_action(method, match.group(1), match.group(2), match.group(3), user, body)
        return json_response(404, {"success": False, "message": f"No route for {method} {path}"})

    def _list_circulars(self, params):
        records = list(self.circulars.values())
        if params.get("status"):
            records = [r for r in records if r.get("status", "approved") == params["status"]]
        if params.get("category"):
            records = [r for r in records if r["category"] == params["category"]]
        if params.get("limit"):
            records = records[: int(params["limit"])]
        return records

    def _create_pending(self, form, files, user):
        name, content, _mime = files["file"]
        extra = {}
        if user is None:
            extra["guestName"] = form.get("guestName") or "Anonymous"
            if form.get("guestEmail"):
                extra["guestEmail"] = form["guestEmail"]
        record = self.add_pending(
            form.get("title"),
            uploaded_by=user,
            category=form.get("category"),
            description=form.get("description", ""),
            fileName=name,
            **extra,
        )
        record["fileSize"] = len(content)
        self.files[record["_id"]] = content
        return json_response(201, {"success": True, "pendingUpload": record})

    def _record_action(self, method, collection, record_id, action, user, body):
        store = self.circulars if collection == "circulars" else self.pending
        record = store.get(record_id)
        if record is None:
            return json_response(404, {"success": False, "message": "Not found"})
        if action in ("download", "file"):
            return pdf_response(self.files[record_id])
        if action is None and method == "GET":
            return json_response(200, {"success": True, "circular": record})
        if action is None and method == "DELETE":
            del store[record_id]
            return json_response(200, {"success": True, "message": "Deleted"})
        if user["role"] != "admin":
            return json_response(403, {"success": False, "message": "Admin only"})
        if action == "status":
            record["status"] = body["status"]
            record["reviewNotes"] = body.get("reviewNotes")
            return json_response(200, {"success": True, "circular": record})
        if action in ("approve", "reject"):
            record["status"] = "approved" if action == "approve" else "rejected"
            record["reviewNotes"] = body.get("reviewNotes")
            record["reviewedBy"] = {"_id": user["_id"], "email": user["email"]}
            if action == "approve":
                self.circulars[record_id] = dict(record, isPublished=True)
            return json_response(200, {"success": True, "pendingUpload": record})
        return json_response(404, {"success": False, "message": "Unknown action"})


@pytest.fixture
def backend():
    fake = FakeBackend()
    fake.add_user(ADMIN_EMAIL, ADMIN_PASSWORD, role="admin")
    fake.add_user(USER_EMAIL, USER_PASSWORD, role="user", institutionName="Green Valley School")
    return fake


@pytest.fixture
def app(backend):
    application = create_app("testing", http_session=backend)
    yield application


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email, password):
    return client.post("/login", data={"email": email, "password": password})


@pytest.fixture
def admin_client(client):
    login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
    return client


@pytest.fixture
def user_client(client):
    login(client, USER_EMAIL, USER_PASSWORD)
    return client


def pdf_upload(name="notice.pdf", content=PDF_BYTES, mimetype="application/pdf"):
    return (BytesIO(content), name, mimetype)
