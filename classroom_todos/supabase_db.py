"""
Supabase backend.

The ``app_users`` and ``todos`` tables are the source of truth; nothing is
cached locally. The supabase client is synchronous, so every query runs in
a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Callable, Optional

from supabase import Client, create_client

from classroom_todos.credentials import (
    DEMO_TEACHER_PASSWORD,
    DEMO_TEACHER_USERNAME,
    CredentialStore,
)
from classroom_todos.db import BackendKind, UpdateLike, coerce_update, valid_text
from classroom_todos.export import DEFAULT_TIMEZONE, CsvExportMixin
from classroom_todos.types import (
    FAILED,
    Role,
    TodoRecord,
    User,
    WriteResult,
    advance_timestamp,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

USERS_TABLE = "app_users"
TODOS_TABLE = "todos"


class SupabaseDatabaseService(CsvExportMixin):
    kind = BackendKind.SUPABASE

    def __init__(
        self,
        client: Client,
        credentials: Optional[CredentialStore] = None,
        export_timezone: str = DEFAULT_TIMEZONE,
    ):
        self.client = client
        self.credentials = credentials or CredentialStore()
        self.export_timezone = export_timezone

    @classmethod
    def from_credentials(cls, url: str, anon_key: str, **kwargs) -> "SupabaseDatabaseService":
        return cls(create_client(url, anon_key), **kwargs)

    async def _rows(self, query: Callable[[], Any]) -> list[dict]:
        response = await asyncio.to_thread(lambda: query().execute())
        return list(response.data or [])

    def _users(self):
        return self.client.table(USERS_TABLE)

    def _todos(self):
        return self.client.table(TODOS_TABLE)

    async def _find_user(self, column: str, value: Any) -> Optional[dict]:
        rows = await self._rows(
            lambda: self._users().select("*").eq(column, value).limit(1)
        )
        return rows[0] if rows else None

    async def _bootstrap_teacher(self) -> Optional[dict]:
        rows = await self._rows(
            lambda: self._users().insert(
                {
                    "id": str(uuid.uuid4()),
                    "username": DEMO_TEACHER_USERNAME,
                    "password_hash": self.credentials.hash_password(
                        DEMO_TEACHER_PASSWORD
                    ),
                    "role": Role.TEACHER.value,
                    "active": True,
                    "created_at": utc_now_iso(),
                }
            )
        )
        if not rows:
            logger.error("Failed to create the default teacher account")
            return None
        logger.info("Bootstrapped default teacher account %s", rows[0]["id"])
        return rows[0]

    async def login(self, username: str, password: str) -> Optional[User]:
        try:
            rows = await self._rows(
                lambda: self._users()
                .select("*")
                .eq("username", username)
                .eq("active", True)
                .limit(1)
            )
            row = rows[0] if rows else None
            if row is None and self.credentials.is_demo_teacher(username, password):
                if await self._find_user("username", username) is None:
                    row = await self._bootstrap_teacher()
            if row is None:
                logger.warning(
                    "Login attempt failed: user not found or inactive: %s", username
                )
                return None
            user = User.from_dict(row)
            if not self.credentials.verify(user, password, row.get("password_hash")):
                return None
            return user
        except Exception:
            logger.exception("Login error")
            return None

    async def create_student(
        self, username: str, password: str, teacher_id: str
    ) -> WriteResult:
        try:
            if await self._find_user("username", username) is not None:
                return FAILED
            rows = await self._rows(
                lambda: self._users().insert(
                    {
                        "id": str(uuid.uuid4()),
                        "username": username,
                        "password_hash": self.credentials.hash_password(password),
                        "role": Role.STUDENT.value,
                        "created_by": teacher_id,
                        "active": True,
                        "created_at": utc_now_iso(),
                    }
                )
            )
            return WriteResult(ok=bool(rows), persisted_remotely=bool(rows))
        except Exception:
            logger.exception("Failed to create student")
            return FAILED

    async def get_students(self, teacher_id: str) -> list[User]:
        try:
            rows = await self._rows(
                lambda: self._users()
                .select("*")
                .eq("created_by", teacher_id)
                .eq("role", Role.STUDENT.value)
            )
        except Exception:
            logger.exception("Failed to fetch students")
            return []
        return [User.from_dict(row) for row in rows]

    async def toggle_student_status(self, student_id: str) -> WriteResult:
        try:
            student = await self._find_user("id", student_id)
            if student is None:
                return FAILED
            rows = await self._rows(
                lambda: self._users()
                .update({"active": not student.get("active", False)})
                .eq("id", student_id)
            )
            return WriteResult(ok=bool(rows), persisted_remotely=bool(rows))
        except Exception:
            logger.exception("Failed to toggle student status")
            return FAILED

    async def get_todos(self, user_id: str) -> list[TodoRecord]:
        try:
            rows = await self._rows(
                lambda: self._todos()
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
            )
        except Exception:
            logger.exception("Failed to fetch todos")
            return []
        return [TodoRecord.from_dict(row) for row in rows]

    async def get_all_todos_for_teacher(self, teacher_id: str) -> list[TodoRecord]:
        try:
            students = await self.get_students(teacher_id)
            owners: dict[str, Optional[User]] = {
                s.id: s for s in students if s.active
            }
            teacher = await self._find_user("id", teacher_id)
            owners[teacher_id] = User.from_dict(teacher) if teacher else None
            rows = await self._rows(
                lambda: self._todos()
                .select("*")
                .in_("user_id", list(owners))
                .order("created_at", desc=True)
            )
        except Exception:
            logger.exception("Failed to fetch todos for teacher")
            return []
        todos = [TodoRecord.from_dict(row) for row in rows]
        return [t.with_user(owners.get(t.user_id)) for t in todos if t.user_id in owners]

    async def create_todo(self, user_id: str, text: str) -> Optional[TodoRecord]:
        if not valid_text(text):
            return None
        now = utc_now_iso()
        try:
            rows = await self._rows(
                lambda: self._todos().insert(
                    {
                        "id": str(uuid.uuid4()),
                        "user_id": user_id,
                        "text": text,
                        "completed": False,
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            )
        except Exception:
            logger.exception("Failed to create todo")
            return None
        return TodoRecord.from_dict(rows[0]) if rows else None

    async def update_todo(self, todo_id: str, updates: UpdateLike) -> WriteResult:
        update = coerce_update(updates)
        if update.text is not None and not valid_text(update.text):
            return FAILED
        try:
            current = await self._rows(
                lambda: self._todos().select("updated_at").eq("id", todo_id).limit(1)
            )
            if not current:
                return FAILED
            values = update.as_dict()
            values["updated_at"] = advance_timestamp(current[0].get("updated_at") or "")
            rows = await self._rows(
                lambda: self._todos().update(values).eq("id", todo_id)
            )
            return WriteResult(ok=bool(rows), persisted_remotely=bool(rows))
        except Exception:
            logger.exception("Failed to update todo")
            return FAILED

    async def delete_todo(self, todo_id: str) -> WriteResult:
        try:
            rows = await self._rows(lambda: self._todos().delete().eq("id", todo_id))
            return WriteResult(ok=bool(rows), persisted_remotely=bool(rows))
        except Exception:
            logger.exception("Failed to delete todo")
            return FAILED

    async def clear_completed_todos(self, user_id: str) -> WriteResult:
        try:
            await self._rows(
                lambda: self._todos()
                .delete()
                .eq("user_id", user_id)
                .eq("completed", True)
            )
            return WriteResult(ok=True, persisted_remotely=True)
        except Exception:
            logger.exception("Failed to clear completed todos")
            return FAILED
