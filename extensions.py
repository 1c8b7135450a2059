"""Shared Flask extension singletons to avoid circular imports."""
import secrets

from flask import session
from flask_login import LoginManager, current_user
from flask_wtf import CSRFProtect

from utils.api_client import CircularNestAPI
from utils.auth_session import AuthSession, TokenStore
from utils.dashboard_feed import APPROVED_VIEW, DashboardState, StateRegistry, view_loader
from utils.preview import BlobPreviewStore

PUBLIC_OWNER = "public"


class CircularNest:
    """Wires the API client, auth session, dashboard state and preview store to one app."""

    def __init__(self, app=None, http_session=None) -> None:
        self.tokens: TokenStore | None = None
        self.api: CircularNestAPI | None = None
        self.auth: AuthSession | None = None
        self.states: StateRegistry | None = None
        self.previews: BlobPreviewStore | None = None
        self.list_limit = 100
        if app is not None:
            self.init_app(app, http_session=http_session)

    def init_app(self, app, http_session=None) -> None:
        self.tokens = TokenStore(session, key=app.config.get("TOKEN_SESSION_KEY", "auth_token"))
        self.api = CircularNestAPI(
            app.config["API_BASE_URL"],
            token_provider=self.tokens.get,
            on_unauthorized=self.tokens.clear,
            timeout=app.config.get("API_TIMEOUT_SECONDS", 30),
            session=http_session,
        )
        self.auth = AuthSession(self.api, self.tokens)
        self.states = StateRegistry(
            max_age=app.config.get("AUTO_REFRESH_SECONDS", 10),
            idle_seconds=app.config.get("STATE_IDLE_SECONDS", 900),
        )
        self.list_limit = app.config.get("LIST_FETCH_LIMIT", 100)
        self.previews = BlobPreviewStore(ttl_seconds=app.config.get("PREVIEW_BLOB_TTL_SECONDS", 300))
        app.extensions["circular_nest"] = self

    def _user_key(self) -> str | None:
        # Flask-Login's session id survives the token being cleared by a 401.
        user_id = session.get("_user_id")
        if user_id:
            return f"user:{user_id}"
        if current_user and current_user.is_authenticated:
            return f"user:{current_user.get_id()}"
        return None

    def owner_key(self) -> str:
        """Stable key for the current browser session: the user id, else a per-session token."""
        user_key = self._user_key()
        if user_key:
            return user_key
        key = session.get("visitor_key")
        if not key:
            key = secrets.token_urlsafe(16)
            session["visitor_key"] = key
        return f"visitor:{key}"

    def state_owner(self) -> str:
        """Owner for cached views: signed-in users get their own, visitors share the public one."""
        return self._user_key() or PUBLIC_OWNER

    def state(self, view: str) -> DashboardState:
        """The current session's cached copy of ``view``."""
        return self.states.get(self.state_owner(), view, view_loader(self.api, view, self.list_limit))

    def invalidate(self, *views: str) -> None:
        self.states.invalidate(self.state_owner(), *views)
        if APPROVED_VIEW in views:
            self.states.invalidate(PUBLIC_OWNER, APPROVED_VIEW)

    def forget_owner(self) -> None:
        """Drop this session's preview and, for a signed-in user, its cached views."""
        user_key = self._user_key()
        if user_key:
            self.states.drop_owner(user_key)
        self.previews.revoke_owner(self.owner_key())


# Initialize extensions without app; app_factory will bind them.
csrf = CSRFProtect()
login_manager = LoginManager()
nest = CircularNest()
