import datetime
import json
import logging
import threading
import time
from functools import lru_cache
from pathlib import Path

import requests
from fastapi import APIRouter
from google.auth import credentials as google_credentials

from todosync.config import get_settings
from todosync.exceptions import AuthenticationError, IntegrationError, RateLimitError
from todosync.http_client import get_session
from todosync.models.auth import AuthState, CredentialsRequest, Session, UserInfo
from todosync.models.common import StatusResponse
from todosync.observable import Observable

logger = logging.getLogger(__name__)

IDENTITY_URL = "https://identitytoolkit.googleapis.com/v1/accounts"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Refresh the ID token a little before it actually expires.
EXPIRY_MARGIN_SECONDS = 60

IDENTITY_ERRORS = {
    "EMAIL_NOT_FOUND": "No account exists for this email.",
    "INVALID_PASSWORD": "The password is incorrect.",
    "INVALID_LOGIN_CREDENTIALS": "The email or password is incorrect.",
    "INVALID_EMAIL": "The email address is badly formatted.",
    "USER_DISABLED": "This account has been disabled.",
    "EMAIL_EXISTS": "An account already exists for this email.",
    "WEAK_PASSWORD": "Password should be at least 6 characters.",
    "TOKEN_EXPIRED": "The session has expired. Sign in again.",
    "INVALID_REFRESH_TOKEN": "The session is no longer valid. Sign in again.",
    "USER_NOT_FOUND": "The account for this session no longer exists.",
}


class SessionStore:
    """Reads/writes the signed-in user's Firebase session to a local JSON file."""

    def __init__(self, path: Path):
        self.path = path

    def get(self) -> Session | None:
        if not self.path.exists():
            return None
        data = json.loads(self.path.read_text())
        if not data:
            return None
        return Session.model_validate(data)

    def save(self, session: Session) -> None:
        self.path.write_text(json.dumps(session.model_dump(), indent=2))

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def _identity_message(code: str) -> str:
    # WEAK_PASSWORD comes back as "WEAK_PASSWORD : Password should be ..."
    key = code.split(":", 1)[0].strip()
    return IDENTITY_ERRORS.get(key, code or "Authentication failed")


def _handle_response(resp: requests.Response) -> dict:
    if resp.status_code == 429:
        raise RateLimitError("Firebase Auth rate limit exceeded. Try again shortly.")
    if resp.ok:
        return resp.json()
    try:
        code = resp.json().get("error", {}).get("message", "")
    except ValueError:
        code = ""
    if resp.status_code in (400, 401, 403):
        raise AuthenticationError(_identity_message(code))
    raise IntegrationError(f"Firebase Auth error ({resp.status_code}): {code or resp.text}")


class FirebaseCredentials(google_credentials.Credentials):
    """google-auth credentials that carry the signed-in user's Firebase ID token.

    Firestore security rules see the request as that user, so the tasks under
    users/{uid} are only reachable by their owner.
    """

    def __init__(self, gateway: "AuthGateway"):
        super().__init__()
        self._gateway = gateway

    def refresh(self, request) -> None:
        session = self._gateway.fresh_session()
        self.token = session.id_token
        # google-auth compares against a naive UTC datetime
        self.expiry = datetime.datetime.fromtimestamp(
            session.expires_at, tz=datetime.timezone.utc
        ).replace(tzinfo=None)


class AuthGateway:
    """Sign-in, sign-up and sign-out against Firebase Authentication.

    The current state is published on ``state`` so the task store can follow
    the signed-in user.
    """

    def __init__(self, store: SessionStore, api_key: str, timeout: float = 15.0):
        self.store = store
        self.api_key = api_key
        self.timeout = timeout
        self.state: Observable[AuthState] = Observable(AuthState.unauthenticated())
        self._lock = threading.Lock()

    # --- Remote calls ---

    def _post(self, url: str, payload: dict) -> dict:
        if not self.api_key:
            raise AuthenticationError(
                "Firebase API key is not configured. Set FIREBASE_API_KEY in the environment or .env."
            )
        try:
            resp = get_session().post(url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise IntegrationError(f"Firebase Auth request failed: {e}") from e
        return _handle_response(resp)

    def _authenticate(self, endpoint: str, email: str, password: str) -> AuthState:
        if not email or not password:
            state = AuthState.error("Email or password can't be empty")
            self.state.set(state)
            return state

        self.state.set(AuthState.loading())
        try:
            data = self._post(
                f"{IDENTITY_URL}:{endpoint}",
                {"email": email, "password": password, "returnSecureToken": True},
            )
            session = Session(
                uid=data["localId"],
                email=data.get("email", email),
                display_name=data.get("displayName") or None,
                id_token=data["idToken"],
                refresh_token=data["refreshToken"],
                expires_at=time.time() + int(data.get("expiresIn", 3600)),
            )
            with self._lock:
                self.store.save(session)
        except (AuthenticationError, IntegrationError, RateLimitError) as e:
            logger.warning("%s failed for %s: %s", endpoint, email, e)
            state = AuthState.error(str(e))
        except (KeyError, ValueError) as e:
            logger.exception("Unexpected %s response", endpoint)
            state = AuthState.error(f"Unexpected response from Firebase Auth: {e}")
        else:
            logger.info("Signed in as %s (%s)", session.email, session.uid)
            state = AuthState.authenticated(session.user())
        self.state.set(state)
        return state

    # --- Public API ---

    def check_auth_status(self) -> AuthState:
        """Restore a persisted session, if any."""
        try:
            session = self.store.get()
        except ValueError as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.store.path, e)
            session = None
        state = AuthState.authenticated(session.user()) if session else AuthState.unauthenticated()
        self.state.set(state)
        return state

    def sign_in(self, email: str, password: str) -> AuthState:
        return self._authenticate("signInWithPassword", email, password)

    def sign_up(self, email: str, password: str) -> AuthState:
        return self._authenticate("signUp", email, password)

    def sign_out(self) -> AuthState:
        with self._lock:
            self.store.clear()
        logger.info("Signed out")
        state = AuthState.unauthenticated()
        self.state.set(state)
        return state

    def current_user(self) -> UserInfo | None:
        state = self.state.value
        return state.user if state.state == "authenticated" else None

    def fresh_session(self) -> Session:
        """Return the persisted session, exchanging the refresh token if the ID token has expired."""
        with self._lock:
            session = self.store.get()
            if session is None:
                raise AuthenticationError("Not signed in. POST /auth/signin first.")
            if session.expires_at - EXPIRY_MARGIN_SECONDS > time.time():
                return session

            data = self._post(
                SECURE_TOKEN_URL,
                {"grant_type": "refresh_token", "refresh_token": session.refresh_token},
            )
            session = session.model_copy(
                update={
                    "id_token": data["id_token"],
                    "refresh_token": data.get("refresh_token", session.refresh_token),
                    "expires_at": time.time() + int(data.get("expires_in", 3600)),
                }
            )
            self.store.save(session)
            logger.debug("Refreshed ID token for %s", session.uid)
            return session

    def get_credentials(self) -> FirebaseCredentials:
        """Credentials for the Firestore client. Raises AuthenticationError if nobody is signed in."""
        creds = FirebaseCredentials(self)
        creds.refresh(None)
        return creds


@lru_cache
def get_auth_gateway() -> AuthGateway:
    settings = get_settings()
    return AuthGateway(SessionStore(settings.session_file), settings.firebase_api_key, settings.request_timeout)


# --- Auth router ---

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signin")
def sign_in(request: CredentialsRequest) -> AuthState:
    return get_auth_gateway().sign_in(request.email, request.password)


@router.post("/signup")
def sign_up(request: CredentialsRequest) -> AuthState:
    return get_auth_gateway().sign_up(request.email, request.password)


@router.post("/signout")
def sign_out() -> AuthState:
    return get_auth_gateway().sign_out()


@router.get("/state")
def auth_state() -> AuthState:
    return get_auth_gateway().state.value


@router.get("/status")
def auth_status() -> StatusResponse:
    """Check whether a user is signed in."""
    user = get_auth_gateway().current_user()
    return StatusResponse(
        integration="firebase",
        authenticated=user is not None,
        message=f"Signed in as {user.email}" if user else "Not signed in. POST /auth/signin to connect.",
    )
