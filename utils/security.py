"""Security helpers for headers, input sanitation, and redirect checks."""
from urllib.parse import urlparse, urljoin

import bleach
from flask import request


def clean_text(value: str | None) -> str:
    """Strip markup from free text before it is forwarded to the API."""
    if not value:
        return ""
    return bleach.clean(str(value), tags=[], attributes={}, strip=True).strip()


def apply_security_headers(response, force_https: bool = False, api_origin: str | None = None):
    """Apply security headers; frames are allowed for same-origin blob previews and the API's public files."""
    frame_sources = "'self' blob:"
    if api_origin:
        frame_sources = f"{frame_sources} {api_origin} https:"
    csp = (
        "default-src 'self'; "
        "style-src 'self' 'unsafe-inline'; "
        "script-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: blob:; "
        f"frame-src {frame_sources}; "
        f"object-src {frame_sources};"
    )
    response.headers.setdefault("Content-Security-Policy", csp)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def is_safe_redirect_url(target: str) -> bool:
    """Validate redirect targets to prevent open redirect attacks."""
    if not target:
        return False
    ref_url = urlparse(request.host_url)
    test_url = urlparse(urljoin(request.host_url, target))
    return test_url.scheme in ("http", "https") and ref_url.netloc == test_url.netloc
