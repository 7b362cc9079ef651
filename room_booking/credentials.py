"""OAuth credential handling for the booking account.

The service acts on behalf of one Google account. Its token is kept in a
JSON file next to the deployment; when that file is missing the store walks
through an explicit handshake::

    UNAUTHENTICATED --begin_authorization()--> AWAITING_CODE
    AWAITING_CODE --complete_authorization(code)--> AUTHORIZED
    AWAITING_CODE --exchange fails--> UNAUTHENTICATED

``begin_authorization`` is reached from ``/oauth2/authorize`` (or from
startup, which logs the URL) and ``complete_authorization`` from the
``/oauth2callback`` redirect, so no operator has to sit at a terminal.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from .config import SCOPES
from .errors import AuthError

logger = logging.getLogger(__name__)


class AuthState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AWAITING_CODE = "awaiting_code"
    AUTHORIZED = "authorized"


def _load_client_config(path: Path) -> Tuple[Dict[str, Any], str]:
    """Return the client secret config and the redirect URI to use with it.

    Both "web" and "installed" client secret files are accepted; the first
    registered redirect URI is the one Google will call back.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            config = json.load(fh)
    except (OSError, ValueError) as exc:
        raise AuthError(f"Cannot read OAuth client secrets from {path}: {exc}") from exc
    section = config.get("web") or config.get("installed")
    if not section:
        raise AuthError(f"{path} is not an OAuth client secrets file")
    redirect_uris = section.get("redirect_uris") or []
    if not redirect_uris:
        raise AuthError(f"{path} does not list any redirect_uris")
    return config, redirect_uris[0]


class CredentialStore:
    """Loads, caches and (when needed) obtains the booking account's token."""

    def __init__(
        self,
        client_secrets_path: str | Path,
        token_path: str | Path,
        scopes: Iterable[str] = SCOPES,
    ) -> None:
        self.client_secrets_path = Path(client_secrets_path)
        self.token_path = Path(token_path)
        self.scopes = list(scopes)
        self._lock = threading.Lock()
        self._credentials: Optional[Credentials] = None
        self._flow: Optional[Flow] = None
        self._oauth_state: Optional[str] = None
        self._authorization_url: Optional[str] = None
        self._state = AuthState.UNAUTHENTICATED

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def authorization_url(self) -> Optional[str]:
        """The consent URL of the handshake in progress, if any."""
        return self._authorization_url

    def obtain(self) -> Credentials:
        """Return the cached or stored credential.

        A stored token is returned as is; an expired access token is left to
        the Google client library to refresh. A token file that cannot be
        read as an authorized-user token raises ``AuthError``. With no token on disk a
        handshake is started and ``AuthError`` tells the caller where the
        account owner has to go.
        """
        with self._lock:
            if self._credentials is not None:
                return self._credentials
            if self.token_path.exists():
                try:
                    creds = Credentials.from_authorized_user_file(str(self.token_path), self.scopes)
                except (OSError, ValueError) as exc:
                    logger.error("Cannot load Google token from %s: %s", self.token_path, exc)
                    raise AuthError(
                        f"Token file {self.token_path} is not an authorized-user token: {exc}; "
                        "visit /oauth2/authorize to replace it"
                    ) from exc
                self._credentials = creds
                self._state = AuthState.AUTHORIZED
                logger.info("Loaded Google token from %s", self.token_path)
                return creds
            if self._state is not AuthState.AWAITING_CODE:
                self._start_flow()
            url = self._authorization_url
        raise AuthError(
            f"Google Calendar access is not authorized yet; visit {url}",
            authorization_url=url,
        )

    def begin_authorization(self) -> str:
        """Start a new handshake and return the consent URL."""
        with self._lock:
            return self._start_flow()

    def complete_authorization(self, code: str, state: Optional[str] = None) -> Credentials:
        """Exchange the code from the redirect callback and persist the token."""
        with self._lock:
            if self._state is not AuthState.AWAITING_CODE or self._flow is None:
                raise AuthError("No authorization is in progress")
            if state is not None and state != self._oauth_state:
                raise AuthError("OAuth state does not match the authorization in progress")
            try:
                self._flow.fetch_token(code=code)
            except Exception as exc:
                logger.error("Error retrieving access token: %s", exc)
                self._reset_flow()
                raise AuthError(f"Error retrieving access token: {exc}") from exc
            creds = self._flow.credentials
            self.token_path.write_text(creds.to_json(), encoding="utf-8")
            logger.info("Token stored to %s", self.token_path)
            self._credentials = creds
            self._reset_flow()
            self._state = AuthState.AUTHORIZED
            return creds

    def _start_flow(self) -> str:
        client_config, redirect_uri = _load_client_config(self.client_secrets_path)
        flow = Flow.from_client_config(client_config, scopes=self.scopes, redirect_uri=redirect_uri)
        url, oauth_state = flow.authorization_url(access_type="offline", prompt="consent")
        self._flow = flow
        self._oauth_state = oauth_state
        self._authorization_url = url
        self._state = AuthState.AWAITING_CODE
        logger.info("Authorize this app by visiting this url: %s", url)
        return url

    def _reset_flow(self) -> None:
        self._flow = None
        self._oauth_state = None
        self._authorization_url = None
        self._state = AuthState.UNAUTHENTICATED
