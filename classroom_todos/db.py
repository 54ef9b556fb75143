"""
Storage backend contract and the local (mock) backend.

Every backend implements ``DatabaseService``. Failures of any kind are
reduced to ``None`` / a falsy ``WriteResult`` / an empty list at this
boundary; callers cannot tell "record missing" from "backend unreachable".
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from enum import StrEnum
from typing import Mapping, Optional, Protocol, Union

from classroom_todos.credentials import (
    DEMO_TEACHER_USERNAME,
    CredentialStore,
)
from classroom_todos.export import DEFAULT_TIMEZONE, CsvExportMixin
from classroom_todos.local_store import (
    LocalStore,
    LocalStoreUnavailableError,
    load_json,
    save_json,
)
from classroom_todos.types import (
    FAILED,
    Role,
    TodoRecord,
    TodoUpdate,
    User,
    WriteResult,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

USERS_KEY = "todo-app-users"
TODOS_KEY = "todo-app-todos"
DEFAULT_TEACHER_ID = "teacher_1"

UpdateLike = Union[TodoUpdate, Mapping]


class BackendKind(StrEnum):
    MOCK = "mock"
    GOOGLE_SHEETS = "google"
    GOOGLE_OAUTH = "google-oauth"
    SUPABASE = "supabase"


class DatabaseService(Protocol):
    """Operations every storage backend provides, with identical semantics."""

    kind: BackendKind

    async def login(self, username: str, password: str) -> Optional[User]:
        ...

    async def create_student(
        self, username: str, password: str, teacher_id: str
    ) -> WriteResult:
        ...

    async def get_students(self, teacher_id: str) -> list[User]:
        ...

    async def toggle_student_status(self, student_id: str) -> WriteResult:
        ...

    async def get_todos(self, user_id: str) -> list[TodoRecord]:
        ...

    async def get_all_todos_for_teacher(self, teacher_id: str) -> list[TodoRecord]:
        ...

    async def create_todo(self, user_id: str, text: str) -> Optional[TodoRecord]:
        ...

    async def update_todo(self, todo_id: str, updates: UpdateLike) -> WriteResult:
        ...

    async def delete_todo(self, todo_id: str) -> WriteResult:
        ...

    async def clear_completed_todos(self, user_id: str) -> WriteResult:
        ...

    async def export_to_csv(self, teacher_id: str) -> str:
        ...


def coerce_update(updates: UpdateLike) -> TodoUpdate:
    if isinstance(updates, TodoUpdate):
        return updates
    return TodoUpdate(text=updates.get("text"), completed=updates.get("completed"))


def valid_text(text: Optional[str]) -> bool:
    return bool(text and text.strip())


class TableCacheService(CsvExportMixin):
    """
    Contract implementation over in-process ``users`` / ``todos`` tables.

    Subclasses decide where the tables come from and where writes go by
    overriding the hooks: ``_ready`` (load before first use), ``_commit``
    (persist local tables), ``_persist_new_user`` / ``_persist_new_todo``
    (push creations to a remote) and ``_mark_local_only``.
    """

    kind: BackendKind
    bootstrap_default_teacher = False

    def __init__(
        self,
        credentials: Optional[CredentialStore] = None,
        export_timezone: str = DEFAULT_TIMEZONE,
    ):
        self.credentials = credentials or CredentialStore()
        self.export_timezone = export_timezone
        self.users: list[User] = []
        self.todos: list[TodoRecord] = []
        self.password_hashes: dict[str, str] = {}

    # Hooks

    async def _ready(self) -> bool:
        """Return False when the tables could not be read and must not be used."""
        return True

    def _commit(self) -> bool:
        return True

    async def _persist_new_user(self, user: User) -> bool:
        """Return True when the user reached the remote source of truth."""
        return False

    async def _persist_new_todo(self, todo: TodoRecord) -> bool:
        return False

    def _mark_local_only(self, *record_ids: str) -> None:
        return None

    def _new_user_id(self, role: Role) -> str:
        return str(uuid.uuid4())

    def _new_todo_id(self) -> str:
        return str(uuid.uuid4())

    # Lookups

    def _user_by_id(self, user_id: str) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def _user_by_username(self, username: str) -> Optional[User]:
        return next((u for u in self.users if u.username == username), None)

    def _todo_index(self, todo_id: str) -> int:
        for i, todo in enumerate(self.todos):
            if todo.id == todo_id:
                return i
        return -1

    # Contract

    async def login(self, username: str, password: str) -> Optional[User]:
        try:
            if not await self._ready():
                return None
            user = next(
                (u for u in self.users if u.username == username and u.active),
                None,
            )
            if user is None:
                if not (
                    self.bootstrap_default_teacher
                    and self.credentials.is_demo_teacher(username, password)
                    and self._user_by_username(DEMO_TEACHER_USERNAME) is None
                ):
                    return None
                user = await self._bootstrap_teacher()
                if user is None:
                    return None
            if not self.credentials.verify(
                user, password, self.password_hashes.get(user.id)
            ):
                return None
            return replace(user)
        except Exception:
            logger.exception("Login failed for %s", username)
            return None

    async def _bootstrap_teacher(self) -> Optional[User]:
        teacher = User(
            id=self._new_user_id(Role.TEACHER),
            username=DEMO_TEACHER_USERNAME,
            role=Role.TEACHER,
            active=True,
        )
        self.users.append(teacher)
        if not self._commit():
            self.users.remove(teacher)
            return None
        if not await self._persist_new_user(teacher):
            self._mark_local_only(teacher.id)
        logger.info("Bootstrapped default teacher account %s", teacher.id)
        return teacher

    async def create_student(
        self, username: str, password: str, teacher_id: str
    ) -> WriteResult:
        if not await self._ready():
            return FAILED
        if self._user_by_username(username) is not None:
            return FAILED
        student = User(
            id=self._new_user_id(Role.STUDENT),
            username=username,
            role=Role.STUDENT,
            created_by=teacher_id,
            active=True,
            created_at=utc_now_iso(),
        )
        self.users.append(student)
        if password:
            self.password_hashes[student.id] = self.credentials.hash_password(password)
        if not self._commit():
            self.users.remove(student)
            self.password_hashes.pop(student.id, None)
            return FAILED
        remote = await self._persist_new_user(student)
        if not remote:
            self._mark_local_only(student.id)
        return WriteResult(ok=True, persisted_remotely=remote)

    async def get_students(self, teacher_id: str) -> list[User]:
        if not await self._ready():
            return []
        return [
            replace(u)
            for u in self.users
            if u.created_by == teacher_id and u.role == Role.STUDENT
        ]

    async def toggle_student_status(self, student_id: str) -> WriteResult:
        if not await self._ready():
            return FAILED
        user = self._user_by_id(student_id)
        if user is None:
            return FAILED
        user.active = not user.active
        if not self._commit():
            user.active = not user.active
            return FAILED
        self._mark_local_only(student_id)
        return WriteResult(ok=True)

    async def get_todos(self, user_id: str) -> list[TodoRecord]:
        if not await self._ready():
            return []
        return [replace(t) for t in self.todos if t.user_id == user_id]

    async def get_all_todos_for_teacher(self, teacher_id: str) -> list[TodoRecord]:
        if not await self._ready():
            return []
        students = await self.get_students(teacher_id)
        owners = {s.id: s for s in students if s.active}
        teacher = self._user_by_id(teacher_id)
        owners[teacher_id] = replace(teacher) if teacher else None
        return [t.with_user(owners[t.user_id]) for t in self.todos if t.user_id in owners]

    async def create_todo(self, user_id: str, text: str) -> Optional[TodoRecord]:
        if not await self._ready():
            return None
        if not valid_text(text):
            return None
        now = utc_now_iso()
        todo = TodoRecord(
            id=self._new_todo_id(),
            user_id=user_id,
            text=text,
            completed=False,
            created_at=now,
            updated_at=now,
        )
        self.todos.append(todo)
        if not self._commit():
            self.todos.remove(todo)
            return None
        if not await self._persist_new_todo(todo):
            self._mark_local_only(todo.id)
        return replace(todo)

    async def update_todo(self, todo_id: str, updates: UpdateLike) -> WriteResult:
        if not await self._ready():
            return FAILED
        update = coerce_update(updates)
        if update.text is not None and not valid_text(update.text):
            return FAILED
        index = self._todo_index(todo_id)
        if index == -1:
            return FAILED
        previous = self.todos[index]
        self.todos[index] = update.apply(previous)
        if not self._commit():
            self.todos[index] = previous
            return FAILED
        self._mark_local_only(todo_id)
        return WriteResult(ok=True)

    async def delete_todo(self, todo_id: str) -> WriteResult:
        if not await self._ready():
            return FAILED
        index = self._todo_index(todo_id)
        if index == -1:
            return FAILED
        removed = self.todos.pop(index)
        if not self._commit():
            self.todos.insert(index, removed)
            return FAILED
        self._mark_local_only(todo_id)
        return WriteResult(ok=True)

    async def clear_completed_todos(self, user_id: str) -> WriteResult:
        if not await self._ready():
            return FAILED
        previous = self.todos
        removed = [t.id for t in previous if t.user_id == user_id and t.completed]
        self.todos = [
            t for t in previous if not (t.user_id == user_id and t.completed)
        ]
        if not self._commit():
            self.todos = previous
            return FAILED
        if removed:
            self._mark_local_only(*removed)
        return WriteResult(ok=True)


class MockDatabaseService(TableCacheService):
    """
    Backend persisted entirely in a ``LocalStore``.

    User ids follow the legacy ``teacher_1`` / ``student_<hex>`` scheme, which
    the auth session refuses to restore; todo ids are UUIDs.
    """

    kind = BackendKind.MOCK

    def __init__(
        self,
        store: LocalStore,
        credentials: Optional[CredentialStore] = None,
        export_timezone: str = DEFAULT_TIMEZONE,
    ):
        super().__init__(credentials, export_timezone)
        self.store = store
        self.loaded = False
        self._try_load()

    def _try_load(self) -> bool:
        try:
            self._load()
        except LocalStoreUnavailableError:
            logger.exception("Local store unavailable; mock tables not loaded")
            return False
        return True

    async def _ready(self) -> bool:
        return self.loaded or self._try_load()

    def _load(self) -> None:
        # Reads raise LocalStoreUnavailableError before any table is replaced.
        stored_users = load_json(self.store, USERS_KEY)
        stored_todos = load_json(self.store, TODOS_KEY)

        users: list[User] = []
        password_hashes: dict[str, str] = {}
        if isinstance(stored_users, list):
            for data in stored_users:
                users.append(User.from_dict(data))
                if data.get("password_hash"):
                    password_hashes[str(data["id"])] = data["password_hash"]
        self.users = users
        self.password_hashes = password_hashes
        self.todos = (
            [TodoRecord.from_dict(data) for data in stored_todos]
            if isinstance(stored_todos, list)
            else []
        )
        self.loaded = True

        if stored_users is None:
            self.users.append(
                User(
                    id=DEFAULT_TEACHER_ID,
                    username=DEMO_TEACHER_USERNAME,
                    role=Role.TEACHER,
                    active=True,
                )
            )
            self._commit()

    def _commit(self) -> bool:
        users = []
        for user in self.users:
            data = user.as_dict()
            if user.id in self.password_hashes:
                data["password_hash"] = self.password_hashes[user.id]
            users.append(data)
        try:
            save_json(self.store, USERS_KEY, users)
            save_json(self.store, TODOS_KEY, [t.as_dict() for t in self.todos])
        except Exception:
            logger.exception("Failed to persist local tables")
            return False
        return True

    def _new_user_id(self, role: Role) -> str:
        return f"{role.value}_{uuid.uuid4().hex[:12]}"

    def reset(self) -> None:
        """Drop all data and reseed the default teacher (useful in tests)."""
        self.store.remove_item(USERS_KEY)
        self.store.remove_item(TODOS_KEY)
        self.users, self.todos, self.password_hashes = [], [], {}
        self.loaded = False
        self._try_load()
