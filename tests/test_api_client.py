"""
Unit tests for the REST client: headers, error mapping and the 401 hook.
"""
from unittest.mock import MagicMock

import pytest
import requests

from conftest import FakeResponse, json_response, pdf_response
from utils.api_client import (
    HTML_BODY_MESSAGE,
    APIError,
    CircularNestAPI,
    SessionExpiredError,
    extract_error_message,
    records_from,
)


def make_client(*responses, token="tok-123", on_unauthorized=None):
    http = MagicMock()
    http.request.side_effect = list(responses)
    client = CircularNestAPI(
        "http://api.test/",
        token_provider=lambda: token,
        on_unauthorized=on_unauthorized,
        timeout=5,
        session=http,
    )
    return client, http


class TestRequests:
    """Request construction"""

    def test_bearer_token_attached(self):
        """Test authenticated calls carry the stored token"""
        client, http = make_client(json_response(200, {"success": True, "circulars": []}))

        client.list_circulars(status="approved", limit=100)

        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        assert (method, url) == ("GET", "http://api.test/api/circulars")
        assert kwargs["headers"]["Authorization"] == "Bearer tok-123"
        assert kwargs["params"] == {"status": "approved", "limit": 100}
        assert kwargs["timeout"] == 5

    def test_guest_upload_is_unauthenticated(self):
        """Test the guest endpoint never sends a token"""
        client, http = make_client(json_response(201, {"success": True}))

        client.submit_guest_upload({"title": "Notice"}, {"file": ("n.pdf", b"%PDF", "application/pdf")})

        assert "Authorization" not in http.request.call_args.kwargs["headers"]
        assert http.request.call_args.args[1].endswith("/api/pending/guest-upload")

    def test_review_notes_sent_with_approval(self):
        """Test approve sends its notes in the body"""
        client, http = make_client(json_response(200, {"success": True}))
        client.approve_pending_upload("abc", "Looks good")
        assert http.request.call_args.kwargs["json"] == {"reviewNotes": "Looks good"}

    def test_binary_download_returns_bytes(self):
        """Test file endpoints return raw content"""
        client, _http = make_client(pdf_response(b"%PDF-1.4"))
        assert client.download_circular("abc") == b"%PDF-1.4"


class TestErrors:
    """Mapping failures to exceptions"""

    def test_401_clears_session_and_raises(self):
        """Test a rejected token triggers the hook before raising"""
        hook = MagicMock()
        client, _http = make_client(json_response(401, {"message": "Token expired"}), on_unauthorized=hook)

        with pytest.raises(SessionExpiredError, match="Token expired"):
            client.list_my_submissions()
        hook.assert_called_once()

    def test_401_on_any_endpoint(self):
        """Test the hook fires whichever call saw the 401"""
        hook = MagicMock()
        client, _http = make_client(FakeResponse(status_code=401), on_unauthorized=hook)
        with pytest.raises(SessionExpiredError):
            client.download_pending_file("abc")
        hook.assert_called_once()

    def test_401_from_login_is_bad_credentials(self):
        """Test login failures are ordinary errors, not session expiry"""
        hook = MagicMock()
        client, _http = make_client(json_response(401, {"message": "Invalid credentials"}), on_unauthorized=hook)
        with pytest.raises(APIError, match="Invalid credentials"):
            client.login("a@b.in", "wrong")
        hook.assert_not_called()

    def test_html_body_is_reported(self):
        """Test a proxy error page is not parsed as data"""
        html = FakeResponse(status_code=200, headers={"Content-Type": "text/html"}, text="<!DOCTYPE html><html></html>")
        client, _http = make_client(html)
        with pytest.raises(APIError) as exc_info:
            client.list_circulars()
        assert exc_info.value.message == HTML_BODY_MESSAGE

    def test_server_message_is_surfaced(self):
        """Test the API's message becomes the error text"""
        client, _http = make_client(json_response(400, {"success": False, "message": "File too large"}))
        with pytest.raises(APIError) as exc_info:
            client.upload_circular({}, {})
        assert exc_info.value.message == "File too large"
        assert exc_info.value.status_code == 400

    def test_success_false_with_200(self):
        """Test an unsuccessful envelope is treated as an error"""
        client, _http = make_client(json_response(200, {"success": False, "error": "Nope"}))
        with pytest.raises(APIError, match="Nope"):
            client.get_me()

    def test_network_failure_wrapped(self):
        """Test transport errors become APIError"""
        http = MagicMock()
        http.request.side_effect = requests.ConnectionError("refused")
        client = CircularNestAPI("http://api.test", session=http)
        with pytest.raises(APIError, match="Unable to reach"):
            client.health_check()

    def test_html_page_is_not_served_as_pdf(self):
        """Test a proxy page answering a download is reported, not passed on"""
        page = FakeResponse(status_code=200, content=b"<!DOCTYPE html><html>Gateway</html>", headers={"Content-Type": "application/pdf"})
        client, _http = make_client(page)
        with pytest.raises(APIError) as exc_info:
            client.download_circular("abc")
        assert exc_info.value.message == HTML_BODY_MESSAGE

    def test_html_content_type_on_download(self):
        """Test an HTML content type fails a file download"""
        page = FakeResponse(status_code=200, content=b"oops", headers={"Content-Type": "text/html; charset=utf-8"})
        client, _http = make_client(page)
        with pytest.raises(APIError, match="not responding correctly"):
            client.download_pending_file("abc")

    def test_binary_error_uses_status(self):
        """Test a failed download reports its status code"""
        client, _http = make_client(FakeResponse(status_code=404, text="missing", headers={"Content-Type": "text/plain"}))
        with pytest.raises(APIError, match="Failed to load PDF: 404"):
            client.download_circular("abc")


def test_extract_error_message_fallback():
    """Test message extraction prefers message, then error, then the fallback"""
    assert extract_error_message({"message": "A", "error": "B"}) == "A"
    assert extract_error_message({"error": "B"}) == "B"
    assert extract_error_message("oops", fallback="F") == "F"


def test_records_from_picks_first_list():
    """Test envelope unwrapping tolerates alternate keys"""
    assert records_from({"pendingUploads": [1, 2]}, "submissions", "pendingUploads") == [1, 2]
    assert records_from({"data": {}}, "circulars") == []
