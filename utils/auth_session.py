"""Session store for the signed-in user: bearer token, cached profile, login/signup/logout."""
from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping, Optional

from models import SessionUser, profile_to_wire
from utils.api_client import APIError, CircularNestAPI, SessionExpiredError

logger = logging.getLogger("app.auth_session")

PROFILE_SESSION_KEY = "auth_user"


class AuthError(Exception):
    """Raised when a login or signup cannot proceed."""


class TokenStore:
    """Holds the bearer token and cached profile in a mapping (the Flask session in the app)."""

    def __init__(self, storage: MutableMapping[str, Any], key: str = "auth_token") -> None:
        self.storage = storage
        self.key = key

    def get(self) -> Optional[str]:
        return self.storage.get(self.key)

    def set(self, token: str) -> None:
        self.storage[self.key] = token

    def get_profile(self) -> Optional[dict]:
        return self.storage.get(PROFILE_SESSION_KEY)

    def set_profile(self, profile: Mapping[str, Any]) -> None:
        self.storage[PROFILE_SESSION_KEY] = dict(profile)

    def clear(self) -> None:
        self.storage.pop(self.key, None)
        self.storage.pop(PROFILE_SESSION_KEY, None)


class AuthSession:
    """The only mutator of the signed-in state; pages receive it rather than reaching into the session."""

    def __init__(self, api: CircularNestAPI, tokens: TokenStore) -> None:
        self.api = api
        self.tokens = tokens

    @property
    def token(self) -> Optional[str]:
        return self.tokens.get()

    def current_user(self) -> Optional[SessionUser]:
        cached = self.tokens.get_profile()
        if cached:
            try:
                return SessionUser.from_session(cached)
            except TypeError:
                self.tokens.clear()
                return None
        if self.token:
            return self.restore()
        return None

    def restore(self) -> Optional[SessionUser]:
        """Validate a stored token against /api/auth/me and cache the profile."""
        if not self.token:
            return None
        try:
            body = self.api.get_me()
            user = SessionUser.from_api(body.get("user") or {})
        except (APIError, SessionExpiredError, ValueError) as exc:
            logger.info("session_restore_failed", extra={"error": str(exc)})
            self.tokens.clear()
            return None
        self.tokens.set_profile(user.to_session())
        return user

    def login(self, email: str, password: str) -> SessionUser:
        body = self.api.login(email.strip().lower(), password)
        token = body.get("token")
        if not token:
            raise AuthError(body.get("message") or "Login failed")
        try:
            user = SessionUser.from_api(body.get("user") or {})
        except ValueError as exc:
            raise AuthError("Login failed") from exc
        self.tokens.set(token)
        self.tokens.set_profile(user.to_session())
        logger.info("login_succeeded", extra={"user_id": user.id, "role": user.role})
        return user

    def signup(self, email: str, password: str, role: str = "user", **profile: Any) -> Mapping[str, Any]:
        # Only institution accounts may self-register; admins are provisioned on the backend.
        if (role or "").lower() == "admin":
            raise AuthError("Admin registration is disabled. Only institution owners can register.")
        payload = {"email": email.strip().lower(), "password": password, "role": "user"}
        payload.update(profile_to_wire(profile))
        body = self.api.signup(payload)
        logger.info("signup_succeeded", extra={"email": payload["email"]})
        return body

    def update_profile(self, **profile: Any) -> SessionUser:
        body = self.api.update_profile(profile_to_wire(profile))
        current = self.current_user()
        if body.get("user"):
            user = SessionUser.from_api(body["user"])
        elif current:
            merged = current.to_session()
            merged.update({k: v for k, v in profile.items() if v is not None})
            user = SessionUser.from_session(merged)
        else:
            raise AuthError("Profile update returned no user")
        self.tokens.set_profile(user.to_session())
        return user

    def logout(self) -> None:
        self.tokens.clear()
