"""Environment-aware configuration for the Circular Nest front-end."""
import os
import tempfile
from datetime import timedelta

PRODUCTION_API_FALLBACK = "https://circularnest.onrender.com"


def resolve_api_base_url(env_value: str | None, development: bool, dev_origin: str | None = None) -> str:
    """Pick the REST API base URL: explicit override, then dev proxy target, then production."""
    candidate = (env_value or "").strip()
    if candidate.startswith("http://") or candidate.startswith("https://"):
        return candidate.rstrip("/")
    if development:
        return (dev_origin or "http://127.0.0.1:5000").rstrip("/")
    return PRODUCTION_API_FALLBACK


class BaseConfig:
    development = False

    def __init__(self) -> None:
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        self.API_BASE_URL = resolve_api_base_url(
            os.getenv("CIRCULAR_NEST_API_URL"),
            self.development,
            os.getenv("API_DEV_ORIGIN"),
        )
        self.API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", 30))
        self.TOKEN_SESSION_KEY = "auth_token"
        self.SESSION_COOKIE_HTTPONLY = True
        self.REMEMBER_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.PERMANENT_SESSION_LIFETIME = timedelta(days=7)
        self.PREFERRED_URL_SCHEME = os.getenv("PREFERRED_URL_SCHEME", "https")
        self.WTF_CSRF_TIME_LIMIT = 3600
        self.WTF_CSRF_ENABLED = True
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        # Client-side gate only; the API re-validates every upload.
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
        # Must stay above MAX_UPLOAD_BYTES so oversize PDFs reach the form validator instead of a bare 413.
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 16 * 1024 * 1024))
        self.AUTO_REFRESH_SECONDS = int(os.getenv("AUTO_REFRESH_SECONDS", 10))
        self.LIST_FETCH_LIMIT = int(os.getenv("LIST_FETCH_LIMIT", 100))
        self.LANDING_CIRCULAR_LIMIT = int(os.getenv("LANDING_CIRCULAR_LIMIT", 6))
        self.PREVIEW_LOAD_TIMEOUT_SECONDS = int(os.getenv("PREVIEW_LOAD_TIMEOUT_SECONDS", 7))
        self.PREVIEW_BLOB_TTL_SECONDS = int(os.getenv("PREVIEW_BLOB_TTL_SECONDS", 300))
        self.STATE_IDLE_SECONDS = int(os.getenv("STATE_IDLE_SECONDS", 900))
        self.REVIEW_WATCH_TOKEN = os.getenv("REVIEW_WATCH_TOKEN", "")


class DevelopmentConfig(BaseConfig):
    development = True

    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.SESSION_COOKIE_SECURE = False
        self.REMEMBER_COOKIE_SECURE = False


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.ENV = "testing"
        self.SECRET_KEY = "test-secret-key"
        self.API_BASE_URL = "http://api.test"
        self.LOG_DIR = os.path.join(tempfile.gettempdir(), "circular-nest-test-logs")
        self.WTF_CSRF_ENABLED = False
        self.SESSION_COOKIE_SECURE = False
        self.PREFERRED_URL_SCHEME = "http"


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SESSION_COOKIE_SECURE = True
        self.REMEMBER_COOKIE_SECURE = True
