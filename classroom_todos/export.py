"""
CSV export of a teacher's todo overview.
"""

from __future__ import annotations

import csv
import io
from datetime import date, datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from classroom_todos.types import TodoRecord, parse_timestamp

CSV_HEADERS = ["ユーザー名", "タスク", "完了状態", "作成日時", "更新日時"]
COMPLETED_LABEL = "完了"
PENDING_LABEL = "未完了"
UNKNOWN_USER = "Unknown"
DEFAULT_TIMEZONE = "Asia/Tokyo"


def format_local_timestamp(value: str, tz: ZoneInfo) -> str:
    parsed = parse_timestamp(value)
    if parsed is None:
        return value
    local = parsed.astimezone(tz)
    return (
        f"{local.year}/{local.month}/{local.day} "
        f"{local.hour}:{local.minute:02d}:{local.second:02d}"
    )


def todos_to_csv(todos: Iterable[TodoRecord], timezone: str = DEFAULT_TIMEZONE) -> str:
    tz = ZoneInfo(timezone)
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for todo in todos:
        writer.writerow(
            [
                todo.user.username if todo.user else UNKNOWN_USER,
                todo.text,
                COMPLETED_LABEL if todo.completed else PENDING_LABEL,
                format_local_timestamp(todo.created_at, tz),
                format_local_timestamp(todo.updated_at, tz),
            ]
        )
    return buffer.getvalue().rstrip("\n")


def local_today(
    timezone: str = DEFAULT_TIMEZONE, now: Optional[datetime] = None
) -> date:
    """Calendar date in ``timezone``, the zone the exported timestamps use."""
    now = now or datetime.now(ZoneInfo(timezone))
    return now.astimezone(ZoneInfo(timezone)).date()


def export_filename(today: date) -> str:
    return f"todos_{today.isoformat()}.csv"


class CsvExportMixin:
    """``export_to_csv`` for any backend that implements the teacher view."""

    export_timezone: str = DEFAULT_TIMEZONE

    async def export_to_csv(self, teacher_id: str) -> str:
        todos = await self.get_all_todos_for_teacher(teacher_id)
        return todos_to_csv(todos, self.export_timezone)
