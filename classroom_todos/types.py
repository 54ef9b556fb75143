"""
Entity model shared by every storage backend.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any, Optional

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

_clock_lock = threading.Lock()
_last_now: Optional[datetime] = None


class Role(StrEnum):
    TEACHER = "teacher"
    STUDENT = "student"


def utc_now() -> datetime:
    """Current UTC time, strictly later than any value previously returned."""
    global _last_now
    with _clock_lock:
        now = datetime.now(timezone.utc)
        if _last_now is not None and now <= _last_now:
            now = _last_now + timedelta(microseconds=1)
        _last_now = now
        return now


def utc_now_iso() -> str:
    return utc_now().isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are treated as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def advance_timestamp(previous: str) -> str:
    """
    Return a fresh timestamp that sorts at or after ``previous``.

    Records loaded from remote sources can carry clocks ahead of ours; in
    that case the previous value is kept so ``updated_at`` never moves back.
    """
    now = utc_now()
    prior = parse_timestamp(previous)
    if prior is not None and prior > now:
        return prior.isoformat(timespec="microseconds")
    return now.isoformat(timespec="microseconds")


def is_canonical_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


@dataclass
class User:
    id: str
    username: str
    role: Role
    active: bool = True
    created_by: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    @property
    def is_teacher(self) -> bool:
        return self.role == Role.TEACHER

    def as_dict(self) -> dict:
        data = {
            "id": self.id,
            "username": self.username,
            "role": self.role.value,
            "active": self.active,
            "created_at": self.created_at,
        }
        if self.created_by:
            data["created_by"] = self.created_by
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "User":
        return cls(
            id=str(data["id"]),
            username=data.get("username") or "",
            role=Role(data.get("role") or Role.STUDENT),
            active=_as_bool(data.get("active", False)),
            created_by=data.get("created_by") or None,
            created_at=data.get("created_at") or utc_now_iso(),
        )


@dataclass
class TodoRecord:
    id: str
    user_id: str
    text: str
    completed: bool = False
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = ""
    user: Optional[User] = None

    def __post_init__(self):
        if not self.updated_at:
            self.updated_at = self.created_at

    def with_user(self, user: Optional[User]) -> "TodoRecord":
        return replace(self, user=user)

    def as_dict(self) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "text": self.text,
            "completed": self.completed,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.user is not None:
            data["user"] = self.user.as_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "TodoRecord":
        user = data.get("user")
        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id") or ""),
            text=data.get("text") or "",
            completed=_as_bool(data.get("completed", False)),
            created_at=data.get("created_at") or utc_now_iso(),
            updated_at=data.get("updated_at") or "",
            user=User.from_dict(user) if isinstance(user, dict) else None,
        )


@dataclass
class TodoUpdate:
    """Partial update for a todo; ``None`` means "leave unchanged"."""

    text: Optional[str] = None
    completed: Optional[bool] = None

    def as_dict(self) -> dict:
        data: dict = {}
        if self.text is not None:
            data["text"] = self.text
        if self.completed is not None:
            data["completed"] = self.completed
        return data

    def apply(self, todo: TodoRecord) -> TodoRecord:
        return replace(
            todo,
            text=self.text if self.text is not None else todo.text,
            completed=(
                self.completed if self.completed is not None else todo.completed
            ),
            updated_at=advance_timestamp(todo.updated_at),
        )


@dataclass
class Session:
    user: User
    established_at: str = field(default_factory=utc_now_iso)


@dataclass(frozen=True)
class WriteResult:
    """
    Outcome of a mutating backend call.

    ``persisted_remotely`` is False whenever the change only reached the
    in-process cache (or the backend has no remote at all).
    """

    ok: bool
    persisted_remotely: bool = False

    def __bool__(self) -> bool:
        return self.ok


FAILED = WriteResult(ok=False)
