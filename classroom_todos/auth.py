"""
Auth session: the signed-in identity of this process.

The identity is persisted in the local store so it survives restarts. A
restored identity whose id is not a canonical UUID is discarded; ids minted
by the mock backend's legacy scheme must not be replayed against a backend
that keys users by UUID.
"""

from __future__ import annotations

import json
import logging
from enum import StrEnum
from typing import Optional

from classroom_todos.db import DatabaseService
from classroom_todos.local_store import LocalStore, LocalStoreUnavailableError
from classroom_todos.types import Session, User, is_canonical_uuid

logger = logging.getLogger(__name__)

SESSION_KEY = "todo-app-user"
CREDENTIAL_ERROR = "Invalid username or password"


class SessionState(StrEnum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class AuthSession:
    def __init__(self, service: DatabaseService, store: LocalStore):
        self.service = service
        self.store = store
        self.session: Optional[Session] = None
        self.state = SessionState.UNAUTHENTICATED
        self.error: Optional[str] = None

    @property
    def current_user(self) -> Optional[User]:
        return self.session.user if self.session else None

    def restore(self) -> Optional[User]:
        """Load the persisted identity, discarding it if malformed."""
        try:
            raw = self.store.get_item(SESSION_KEY)
        except LocalStoreUnavailableError:
            logger.exception("Could not read stored session; starting signed out")
            return None
        if raw is None:
            return None
        try:
            user = User.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding malformed stored session")
            self._clear()
            return None
        if not is_canonical_uuid(user.id):
            logger.info("Stored user has a non-UUID id; clearing stored session")
            self._clear()
            return None
        self.session = Session(user=user)
        self.state = SessionState.AUTHENTICATED
        return user

    async def login(self, username: str, password: str) -> bool:
        self.state = SessionState.AUTHENTICATING
        self.error = None
        try:
            user = await self.service.login(username, password)
        except Exception:
            logger.exception("Login failed")
            user = None
        if user is None:
            self.session = None
            self.state = SessionState.UNAUTHENTICATED
            self.error = CREDENTIAL_ERROR
            return False
        self.session = Session(user=user)
        self.state = SessionState.AUTHENTICATED
        self.store.set_item(SESSION_KEY, json.dumps(user.as_dict(), ensure_ascii=False))
        return True

    def _clear(self) -> None:
        self.session = None
        self.state = SessionState.UNAUTHENTICATED
        self.store.remove_item(SESSION_KEY)

    def logout(self) -> None:
        self._clear()
        self.error = None
