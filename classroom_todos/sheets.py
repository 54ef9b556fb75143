"""
Google Sheets backends.

The spreadsheet holds two tabs, ``Users`` and ``Todos``, with row 1 as a
header. Both backends load the tabs into a local cache on first use and
serve every read from that cache until ``reload()``. Nothing is served,
written or bootstrapped before the first successful load.

What reaches the sheet:

=====================  ==============  ===================================
operation              API-key driver  OAuth driver
=====================  ==============  ===================================
create_student         local only      appended (local fallback on error)
create_todo            local only      appended (local fallback on error)
default teacher        local only      appended (local fallback on error)
toggle_student_status  local only      local only
update_todo            local only      local only
delete_todo            local only      local only
clear_completed_todos  local only      local only
=====================  ==============  ===================================

Local-only writes report ``persisted_remotely=False`` and their ids stay in
``unsynced_ids`` until the next successful reload, which discards them.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol
from urllib.parse import quote

import requests

from classroom_todos.config import ConfigurationError
from classroom_todos.credentials import CredentialStore
from classroom_todos.db import BackendKind, TableCacheService
from classroom_todos.export import DEFAULT_TIMEZONE
from classroom_todos.types import Role, TodoRecord, User, utc_now_iso

logger = logging.getLogger(__name__)

SHEETS_ENDPOINT = "https://sheets.googleapis.com/v4/spreadsheets"
REQUEST_TIMEOUT = 30  # seconds

USERS_RANGE = "Users!A:F"
TODOS_RANGE = "Todos!A:F"
USERS_HEADER = ["id", "username", "role", "created_by", "active", "created_at"]
TODOS_HEADER = ["id", "user_id", "text", "completed", "created_at", "updated_at"]

TokenProvider = Callable[[], Awaitable[Optional[str]]]


class SheetsNotConfiguredError(ConfigurationError):
    """Raised when a Sheets client is built without spreadsheet credentials."""


class SheetsTransportError(Exception):
    """Any failure talking to the Sheets API."""


class SheetsClient(Protocol):
    async def get_values(self, range_: str) -> list[list[str]]:
        ...

    async def append_values(self, range_: str, rows: list[list[str]]) -> None:
        ...


def _tab_name(range_: str) -> str:
    return range_.split("!", 1)[0]


def _cells(row: list, width: int = 6) -> list[str]:
    values = ["" if v is None else str(v) for v in row[:width]]
    return values + [""] * (width - len(values))


def _flag(value: str) -> bool:
    return value.strip().lower() == "true"


def row_to_user(row: list, index: int) -> User:
    user_id, username, role, created_by, active, created_at = _cells(row)
    return User(
        id=user_id or f"user_{index}",
        username=username,
        role=Role.TEACHER if role == Role.TEACHER.value else Role.STUDENT,
        created_by=created_by or None,
        active=_flag(active),
        created_at=created_at or utc_now_iso(),
    )


def user_to_row(user: User) -> list[str]:
    return [
        user.id,
        user.username,
        user.role.value,
        user.created_by or "",
        "true" if user.active else "false",
        user.created_at,
    ]


def row_to_todo(row: list, index: int) -> TodoRecord:
    todo_id, user_id, text, completed, created_at, updated_at = _cells(row)
    created_at = created_at or utc_now_iso()
    return TodoRecord(
        id=todo_id or f"todo_{index}",
        user_id=user_id,
        text=text,
        completed=_flag(completed),
        created_at=created_at,
        updated_at=updated_at or created_at,
    )


def todo_to_row(todo: TodoRecord) -> list[str]:
    return [
        todo.id,
        todo.user_id,
        todo.text,
        "true" if todo.completed else "false",
        todo.created_at,
        todo.updated_at,
    ]


def _data_rows(rows: list[list]) -> list[tuple[int, list]]:
    # Row 1 is the header; blank rows are skipped but keep their position.
    return [(i, row) for i, row in enumerate(rows[1:]) if any(row)]


class GoogleSheetsClient:
    """
    Sheets v4 ``values`` client authenticating with an API key or an OAuth
    bearer token.
    """

    def __init__(
        self,
        spreadsheet_id: Optional[str],
        *,
        api_key: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        http: Optional[requests.Session] = None,
    ):
        if not spreadsheet_id:
            raise SheetsNotConfiguredError("GOOGLE_SPREADSHEET_ID is not set")
        if not (api_key or token_provider):
            raise SheetsNotConfiguredError(
                "Google Sheets needs GOOGLE_SHEETS_API_KEY or OAuth credentials"
            )
        self.spreadsheet_id = spreadsheet_id
        self.api_key = api_key
        self.token_provider = token_provider
        self.http = http or requests.Session()

    def _url(self, range_: str, suffix: str = "") -> str:
        return (
            f"{SHEETS_ENDPOINT}/{self.spreadsheet_id}/values/"
            f"{quote(range_, safe='!:')}{suffix}"
        )

    async def _auth(self) -> tuple[dict, dict]:
        if self.token_provider is not None:
            token = await self.token_provider()
            if not token:
                raise SheetsTransportError("No valid OAuth access token")
            return {}, {"Authorization": f"Bearer {token}"}
        return {"key": self.api_key}, {}

    def _request(self, method: str, url: str, params: dict, headers: dict, body=None):
        try:
            response = self.http.request(
                method,
                url,
                params=params,
                headers=headers,
                json=body,
                timeout=REQUEST_TIMEOUT,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as e:
            raise SheetsTransportError(f"Google Sheets API error: {e}") from e
        if not isinstance(payload, dict):
            raise SheetsTransportError("Google Sheets API returned a non-object body")
        return payload

    async def get_values(self, range_: str) -> list[list[str]]:
        params, headers = await self._auth()
        payload = await asyncio.to_thread(
            self._request, "GET", self._url(range_), params, headers
        )
        return payload.get("values", [])

    async def append_values(self, range_: str, rows: list[list[str]]) -> None:
        params, headers = await self._auth()
        params.update({"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"})
        await asyncio.to_thread(
            self._request,
            "POST",
            self._url(range_, ":append"),
            params,
            headers,
            {"values": rows},
        )


@dataclass
class InMemorySheetsClient:
    """Spreadsheet double; ``unreachable`` makes every call fail."""

    tabs: dict = field(default_factory=dict)
    unreachable: bool = False

    def __post_init__(self):
        self.tabs.setdefault(_tab_name(USERS_RANGE), [list(USERS_HEADER)])
        self.tabs.setdefault(_tab_name(TODOS_RANGE), [list(TODOS_HEADER)])

    def _check(self) -> None:
        if self.unreachable:
            raise SheetsTransportError("Simulated network failure")

    async def get_values(self, range_: str) -> list[list[str]]:
        self._check()
        return copy.deepcopy(self.tabs.get(_tab_name(range_), []))

    async def append_values(self, range_: str, rows: list[list[str]]) -> None:
        self._check()
        self.tabs.setdefault(_tab_name(range_), []).extend(copy.deepcopy(rows))


class SheetsCacheService(TableCacheService):
    bootstrap_default_teacher = True

    def __init__(
        self,
        client: SheetsClient,
        credentials: Optional[CredentialStore] = None,
        export_timezone: str = DEFAULT_TIMEZONE,
    ):
        super().__init__(credentials, export_timezone)
        self.client = client
        self.loaded = False
        self.unsynced_ids: set[str] = set()

    async def _ready(self) -> bool:
        return self.loaded or await self.reload()

    async def reload(self) -> bool:
        """
        Replace the cache with a fresh read of both tabs.

        On failure the current cache is kept and False is returned. Until a
        load has succeeded every operation fails and the next call reads the
        sheet again.
        """
        try:
            user_rows = await self.client.get_values(USERS_RANGE)
            todo_rows = await self.client.get_values(TODOS_RANGE)
        except SheetsTransportError:
            logger.exception("Failed to load data from Google Sheets")
            return False
        self.users = [row_to_user(row, i) for i, row in _data_rows(user_rows)]
        self.todos = [row_to_todo(row, i) for i, row in _data_rows(todo_rows)]
        known = {u.id for u in self.users}
        self.password_hashes = {
            k: v for k, v in self.password_hashes.items() if k in known
        }
        self.unsynced_ids.clear()
        self.loaded = True
        logger.info(
            "Loaded %d users and %d todos from Google Sheets",
            len(self.users),
            len(self.todos),
        )
        return True

    def _mark_local_only(self, *record_ids: str) -> None:
        self.unsynced_ids.update(record_ids)


class GoogleSheetsReadOnlyService(SheetsCacheService):
    """
    Reads the sheet with an API key. Writes live only in this process and
    are lost on reload or restart.
    """

    kind = BackendKind.GOOGLE_SHEETS


class GoogleSheetsOAuthService(SheetsCacheService):
    """
    Reads and appends to the sheet with an OAuth token. Edits, deletes and
    status toggles are not written back (see module docstring).
    """

    kind = BackendKind.GOOGLE_OAUTH

    async def _append(self, range_: str, row: list[str], record_id: str) -> bool:
        try:
            await self.client.append_values(range_, [row])
            return True
        except SheetsTransportError:
            logger.warning(
                "Could not append %s to Google Sheets; keeping it locally only",
                record_id,
                exc_info=True,
            )
            return False

    async def _persist_new_user(self, user: User) -> bool:
        return await self._append(USERS_RANGE, user_to_row(user), user.id)

    async def _persist_new_todo(self, todo: TodoRecord) -> bool:
        return await self._append(TODOS_RANGE, todo_to_row(todo), todo.id)
