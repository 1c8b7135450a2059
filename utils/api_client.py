"""HTTP client for the Circular Nest REST API."""
import logging
from typing import Any, Callable, Dict, Mapping, Optional

import requests

logger = logging.getLogger("app.api_client")

GENERIC_ERROR_MESSAGE = "The Circular Nest service could not complete the request."
HTML_BODY_MESSAGE = "API backend is not responding correctly. Please check server configuration."


class APIError(Exception):
    """Raised when the API answers with an error, an unusable body, or not at all."""

    def __init__(self, message: str, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


class SessionExpiredError(Exception):
    """Raised on HTTP 401; handled globally, never per call."""

    def __init__(self, message: str = "Your session has expired. Please log in again.") -> None:
        super().__init__(message)
        self.message = message


def extract_error_message(payload: Any, fallback: str = GENERIC_ERROR_MESSAGE) -> str:
    if isinstance(payload, Mapping):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return fallback


def _looks_like_html(response: requests.Response, binary: bool = False) -> bool:
    content_type = (response.headers.get("Content-Type") or "").lower()
    if "text/html" in content_type:
        return True
    # Sniff raw bytes for file downloads so a large PDF is never decoded as text.
    if binary:
        head = (response.content or b"")[:200].lstrip().lower()
        return head.startswith((b"<!doctype html", b"<html"))
    head = (response.text or "")[:200].lstrip().lower()
    return head.startswith(("<!doctype html", "<html"))


class CircularNestAPI:
    """Thin wrapper over the REST contract.

    The bearer token is read through ``token_provider`` on every call so the
    client can be shared across requests. ``on_unauthorized`` runs before
    :class:`SessionExpiredError` is raised, which is where callers clear the
    stored token.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        on_unauthorized: Optional[Callable[[], None]] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider or (lambda: None)
        self.on_unauthorized = on_unauthorized
        self.timeout = timeout
        self.http = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if authenticated:
            token = self.token_provider()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    def _send(self, method: str, path: str, *, authenticated: bool = True, **kwargs) -> requests.Response:
        try:
            response = self.http.request(
                method,
                self._url(path),
                headers=self._headers(authenticated),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.warning("api_request_failed", extra={"method": method, "path": path, "error": str(exc)})
            raise APIError(f"Unable to reach the Circular Nest service: {exc}") from exc

        # Only a rejected bearer token means the session is gone; a 401 from login is bad credentials.
        if response.status_code == 401 and authenticated:
            logger.info("api_session_expired", extra={"method": method, "path": path})
            if self.on_unauthorized:
                self.on_unauthorized()
            try:
                body = response.json()
            except ValueError:
                body = None
            raise SessionExpiredError(extract_error_message(body, "Your session has expired. Please log in again."))
        return response

    def _request(self, method: str, path: str, *, authenticated: bool = True, **kwargs) -> Dict[str, Any]:
        response = self._send(method, path, authenticated=authenticated, **kwargs)

        if _looks_like_html(response):
            logger.error(
                "api_html_response",
                extra={"method": method, "path": path, "status": response.status_code},
            )
            raise APIError(HTML_BODY_MESSAGE, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = extract_error_message(body)
            logger.warning(
                "api_error_response",
                extra={"method": method, "path": path, "status": response.status_code, "api_message": message},
            )
            raise APIError(message, status_code=response.status_code, payload=body)

        if not isinstance(body, dict):
            raise APIError("Malformed response from the Circular Nest service.", status_code=response.status_code)

        if body.get("success") is False:
            message = extract_error_message(body)
            logger.warning("api_unsuccessful", extra={"method": method, "path": path, "api_message": message})
            raise APIError(message, status_code=response.status_code, payload=body)
        return body

    def _binary(self, path: str) -> bytes:
        response = self._send("GET", path, stream=False)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            raise APIError(
                extract_error_message(body, f"Failed to load PDF: {response.status_code}"),
                status_code=response.status_code,
                payload=body,
            )
        if _looks_like_html(response, binary=True):
            logger.error("api_html_response", extra={"method": "GET", "path": path, "status": response.status_code})
            raise APIError(HTML_BODY_MESSAGE, status_code=response.status_code)
        return response.content

    # Auth
    def signup(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/auth/signup", json=dict(payload), authenticated=False)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        return self._request("POST", "/api/auth/login", json={"email": email, "password": password}, authenticated=False)

    def get_me(self) -> Dict[str, Any]:
        return self._request("GET", "/api/auth/me")

    def update_profile(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", "/api/auth/profile", json=dict(payload))

    # Circulars
    def list_circulars(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
        limit: int | None = None,
        page: int | None = None,
    ) -> Dict[str, Any]:
        params = {k: v for k, v in {"status": status, "category": category, "limit": limit, "page": page}.items() if v is not None}
        return self._request("GET", "/api/circulars", params=params)

    def get_circular(self, circular_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/circulars/{circular_id}")

    def update_circular(self, circular_id: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("PUT", f"/api/circulars/{circular_id}", json=dict(payload))

    def update_circular_status(self, circular_id: str, status: str, review_notes: str | None = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"status": status}
        if review_notes:
            body["reviewNotes"] = review_notes
        return self._request("PUT", f"/api/circulars/{circular_id}/status", json=body)

    def delete_circular(self, circular_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/circulars/{circular_id}")

    def download_circular(self, circular_id: str) -> bytes:
        return self._binary(f"/api/circulars/{circular_id}/download")

    def upload_circular(self, fields: Mapping[str, Any], files: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/circulars/upload", data=dict(fields), files=dict(files))

    # Pending uploads
    def submit_pending_upload(self, fields: Mapping[str, Any], files: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/api/pending/upload", data=dict(fields), files=dict(files))

    def submit_guest_upload(self, fields: Mapping[str, Any], files: Mapping[str, Any]) -> Dict[str, Any]:
        return self._request(
            "POST", "/api/pending/guest-upload", data=dict(fields), files=dict(files), authenticated=False
        )

    def list_pending_uploads(self, status: str | None = None) -> Dict[str, Any]:
        params = {"status": status} if status else {}
        return self._request("GET", "/api/pending", params=params)

    def list_my_submissions(self) -> Dict[str, Any]:
        return self._request("GET", "/api/pending/my-submissions")

    def approve_pending_upload(self, upload_id: str, review_notes: str | None = None) -> Dict[str, Any]:
        return self._request("PUT", f"/api/pending/{upload_id}/approve", json={"reviewNotes": review_notes or ""})

    def reject_pending_upload(self, upload_id: str, review_notes: str | None = None) -> Dict[str, Any]:
        return self._request("PUT", f"/api/pending/{upload_id}/reject", json={"reviewNotes": review_notes or ""})

    def delete_pending_upload(self, upload_id: str) -> Dict[str, Any]:
        return self._request("DELETE", f"/api/pending/{upload_id}")

    def download_pending_file(self, upload_id: str) -> bytes:
        return self._binary(f"/api/pending/{upload_id}/file")

    def health_check(self) -> Dict[str, Any]:
        return self._request("GET", "/api/health", authenticated=False)


def records_from(payload: Mapping[str, Any], *keys: str) -> list:
    """Return the first list found under ``keys`` in an API envelope."""
    for key in keys:
        value = payload.get(key)
        if isinstance(value, list):
            return value
    return []
