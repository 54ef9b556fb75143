"""
OAuth2 token lifecycle for read/write Google Sheets access.

Only the tokens and their expiry are persisted. Authorization codes are
exchanged as soon as the redirect callback arrives and are never stored.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import Callable, Optional
from urllib.parse import urlencode

import requests

from classroom_todos.config import ConfigurationError
from classroom_todos.local_store import LocalStore, LocalStoreUnavailableError

logger = logging.getLogger(__name__)

OAUTH_STATE = "google_sheets_auth"
AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
]
REFRESH_MARGIN_SECONDS = 60
REQUEST_TIMEOUT = 30  # seconds

ACCESS_TOKEN_KEY = "google_access_token"
REFRESH_TOKEN_KEY = "google_refresh_token"
TOKEN_EXPIRY_KEY = "google_token_expiry"


class OAuthNotConfiguredError(ConfigurationError):
    """Raised when an OAuth flow is started without a client id."""


class TokenState(StrEnum):
    NO_TOKEN = "no_token"
    AUTHORIZING = "authorizing"
    AUTHORIZED = "authorized"
    EXPIRED = "expired"
    REFRESHING = "refreshing"


class GoogleOAuthClient:
    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        store: LocalStore,
        *,
        clock: Callable[[], float] = time.time,
        http: Optional[requests.Session] = None,
    ):
        self.client_id = client_id or ""
        self.client_secret = client_secret or ""
        self.redirect_uri = redirect_uri
        self.store = store
        self.clock = clock
        self.http = http or requests.Session()

        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self.token_expiry: Optional[int] = None  # epoch milliseconds
        self._transition: Optional[TokenState] = None
        self._load_stored_tokens()

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _load_stored_tokens(self) -> None:
        try:
            token = self.store.get_item(ACCESS_TOKEN_KEY)
            expiry = self.store.get_item(TOKEN_EXPIRY_KEY)
            refresh = self.store.get_item(REFRESH_TOKEN_KEY)
        except LocalStoreUnavailableError:
            logger.exception("Could not read stored OAuth tokens")
            return
        if not token or not expiry:
            return
        try:
            self.token_expiry = int(expiry)
        except ValueError:
            logger.warning("Ignoring stored OAuth token with malformed expiry")
            return
        self.access_token = token
        self.refresh_token = refresh

    def _save_tokens(self, payload: dict) -> None:
        self.access_token = payload["access_token"]
        self.token_expiry = self._now_ms() + int(payload.get("expires_in", 0)) * 1000
        if payload.get("refresh_token"):
            self.refresh_token = payload["refresh_token"]
            self.store.set_item(REFRESH_TOKEN_KEY, self.refresh_token)
        self.store.set_item(ACCESS_TOKEN_KEY, self.access_token)
        self.store.set_item(TOKEN_EXPIRY_KEY, str(self.token_expiry))

    @property
    def state(self) -> TokenState:
        if self._transition is not None:
            return self._transition
        if not self.access_token:
            return TokenState.NO_TOKEN
        if self.token_expiry is not None and self._now_ms() >= self.token_expiry:
            return TokenState.EXPIRED
        return TokenState.AUTHORIZED

    def is_configured(self) -> bool:
        return bool(self.client_id)

    def is_authenticated(self) -> bool:
        return self.state == TokenState.AUTHORIZED

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise OAuthNotConfiguredError("GOOGLE_OAUTH_CLIENT_ID is not set")

    def get_auth_url(self) -> str:
        self._require_configured()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": OAUTH_STATE,
        }
        self._transition = TokenState.AUTHORIZING
        return f"{AUTH_ENDPOINT}?{urlencode(params)}"

    def _post_token(self, data: dict) -> dict:
        response = self.http.post(TOKEN_ENDPOINT, data=data, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return response.json()

    async def handle_auth_callback(self, code: str, state: Optional[str]) -> bool:
        """
        Exchange an authorization code for tokens.

        Callbacks whose ``state`` does not match ``OAUTH_STATE`` are ignored.
        """
        if state != OAUTH_STATE or not code:
            logger.warning("Ignoring OAuth callback with unexpected state")
            return False
        self._require_configured()
        self._transition = TokenState.AUTHORIZING
        try:
            payload = await asyncio.to_thread(
                self._post_token,
                {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "code": code,
                    "grant_type": "authorization_code",
                    "redirect_uri": self.redirect_uri,
                },
            )
            self._save_tokens(payload)
            return True
        except (requests.RequestException, ValueError, KeyError):
            logger.exception("OAuth token exchange failed")
            return False
        finally:
            self._transition = None

    async def refresh_access_token(self) -> bool:
        if not self.refresh_token or not self.is_configured():
            logger.warning("Cannot refresh OAuth token; re-authorization required")
            self.logout()
            return False
        self._transition = TokenState.REFRESHING
        try:
            payload = await asyncio.to_thread(
                self._post_token,
                {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            self._transition = None
            self._save_tokens(payload)
            return True
        except (requests.RequestException, ValueError, KeyError):
            logger.exception("OAuth token refresh failed")
            self._transition = None
            self.logout()
            return False

    async def get_valid_access_token(self) -> Optional[str]:
        if not self.access_token:
            return None
        margin_ms = REFRESH_MARGIN_SECONDS * 1000
        if self.token_expiry is not None and self._now_ms() >= self.token_expiry - margin_ms:
            if not await self.refresh_access_token():
                return None
        return self.access_token

    def logout(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.token_expiry = None
        self._transition = None
        self.store.remove_item(ACCESS_TOKEN_KEY)
        self.store.remove_item(REFRESH_TOKEN_KEY)
        self.store.remove_item(TOKEN_EXPIRY_KEY)
