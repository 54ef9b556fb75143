import unittest
from unittest.mock import MagicMock

import requests

from classroom_todos.db import BackendKind
from classroom_todos.sheets import (
    SHEETS_ENDPOINT,
    TODOS_HEADER,
    USERS_HEADER,
    GoogleSheetsClient,
    GoogleSheetsOAuthService,
    GoogleSheetsReadOnlyService,
    InMemorySheetsClient,
    SheetsNotConfiguredError,
    SheetsTransportError,
    row_to_todo,
    row_to_user,
    todo_to_row,
    user_to_row,
)
from classroom_todos.types import Role, is_canonical_uuid

TEACHER_ID = "6f1c1f4e-2f52-4d8e-9a61-0c5a3b8f2d11"
ALICE_ID = "0b7e0c2a-8a0e-4a55-b0b5-5c3e6d7f8a90"


def seeded_client() -> InMemorySheetsClient:
    return InMemorySheetsClient(
        tabs={
            "Users": [
                list(USERS_HEADER),
                [TEACHER_ID, "teacher", "teacher", "", "true", "2026-01-01T00:00:00+00:00"],
                [ALICE_ID, "alice", "student", TEACHER_ID, "true", "2026-01-02T00:00:00+00:00"],
            ],
            "Todos": [
                list(TODOS_HEADER),
                [
                    "todo-a",
                    ALICE_ID,
                    "buy milk",
                    "false",
                    "2026-01-03T00:00:00+00:00",
                    "2026-01-03T00:00:00+00:00",
                ],
            ],
        }
    )


class RowCodecTests(unittest.TestCase):
    def test_user_row_defaults(self):
        user = row_to_user(["", "bob"], 4)
        self.assertEqual(user.id, "user_4")
        self.assertEqual(user.role, Role.STUDENT)
        self.assertFalse(user.active)
        self.assertIsNone(user.created_by)

    def test_user_row_round_trip(self):
        row = [TEACHER_ID, "teacher", "teacher", "", "true", "2026-01-01T00:00:00+00:00"]
        self.assertEqual(user_to_row(row_to_user(row, 0)), row)

    def test_todo_row_defaults(self):
        todo = row_to_todo(["", ALICE_ID, "read", "TRUE", "2026-01-01T00:00:00+00:00"], 2)
        self.assertEqual(todo.id, "todo_2")
        self.assertTrue(todo.completed)
        self.assertEqual(todo.updated_at, todo.created_at)
        self.assertEqual(todo_to_row(todo)[3], "true")


class ReadOnlySheetsTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.client = seeded_client()
        self.db = GoogleSheetsReadOnlyService(self.client)

    async def test_reads_come_from_the_sheet(self):
        self.assertEqual(self.db.kind, BackendKind.GOOGLE_SHEETS)
        students = await self.db.get_students(TEACHER_ID)
        self.assertEqual([s.username for s in students], ["alice"])
        todos = await self.db.get_all_todos_for_teacher(TEACHER_ID)
        self.assertEqual([(t.text, t.user.username) for t in todos], [("buy milk", "alice")])

    async def test_writes_are_local_only(self):
        result = await self.db.create_student("bob", "pw", TEACHER_ID)
        self.assertTrue(result)
        self.assertFalse(result.persisted_remotely)
        self.assertIsNotNone(await self.db.create_todo(ALICE_ID, "walk dog"))
        self.assertEqual(len(self.client.tabs["Users"]), 3)
        self.assertEqual(len(self.client.tabs["Todos"]), 2)
        self.assertEqual(len(self.db.unsynced_ids), 2)

    async def test_reload_discards_local_writes(self):
        await self.db.create_todo(ALICE_ID, "walk dog")
        self.assertEqual(len(await self.db.get_todos(ALICE_ID)), 2)
        self.assertTrue(await self.db.reload())
        self.assertEqual(len(await self.db.get_todos(ALICE_ID)), 1)
        self.assertEqual(self.db.unsynced_ids, set())

    async def test_unreachable_sheet_degrades_to_empty(self):
        self.client.unreachable = True
        self.assertEqual(await self.db.get_todos(ALICE_ID), [])
        self.assertIsNone(await self.db.login("alice", "pw"))

    async def test_default_teacher_bootstraps_on_empty_sheet(self):
        db = GoogleSheetsReadOnlyService(InMemorySheetsClient())
        teacher = await db.login("teacher", "teacher123")
        self.assertIsNotNone(teacher)
        self.assertEqual(teacher.role, Role.TEACHER)
        self.assertTrue(is_canonical_uuid(teacher.id))
        again = await db.login("teacher", "teacher123")
        self.assertEqual(again.id, teacher.id)

    async def test_failed_first_load_is_read_again_on_next_call(self):
        self.client.unreachable = True
        self.assertIsNone(await self.db.login("alice", "pw"))
        self.assertIsNone(await self.db.create_todo(ALICE_ID, "walk dog"))
        self.assertFalse(self.db.loaded)

        self.client.unreachable = False
        alice = await self.db.login("alice", "pw")
        self.assertEqual(alice.id, ALICE_ID)
        self.assertEqual(len(await self.db.get_todos(ALICE_ID)), 1)

    async def test_failed_reload_keeps_the_cache(self):
        await self.db.create_todo(ALICE_ID, "walk dog")
        self.client.unreachable = True
        self.assertFalse(await self.db.reload())
        self.assertEqual(len(await self.db.get_todos(ALICE_ID)), 2)

    async def test_clear_completed_is_local_only(self):
        extra = await self.db.create_todo(ALICE_ID, "walk dog")
        await self.db.update_todo("todo-a", {"completed": True})
        result = await self.db.clear_completed_todos(ALICE_ID)
        self.assertTrue(result)
        self.assertFalse(result.persisted_remotely)
        self.assertEqual([t.id for t in await self.db.get_todos(ALICE_ID)], [extra.id])
        self.assertEqual(len(self.client.tabs["Todos"]), 2)
        self.assertTrue(await self.db.clear_completed_todos(ALICE_ID))

    async def test_teacher_view_excludes_inactive_students(self):
        await self.db.create_todo(TEACHER_ID, "plan lesson")
        self.assertTrue(await self.db.toggle_student_status(ALICE_ID))
        todos = await self.db.get_all_todos_for_teacher(TEACHER_ID)
        self.assertEqual(
            [(t.text, t.user.username) for t in todos], [("plan lesson", "teacher")]
        )
        self.assertEqual(len(await self.db.get_todos(ALICE_ID)), 1)

    async def test_no_bootstrap_with_wrong_password(self):
        db = GoogleSheetsReadOnlyService(InMemorySheetsClient())
        self.assertIsNone(await db.login("teacher", "wrong"))
        self.assertEqual(db.users, [])


class OAuthSheetsTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.client = seeded_client()
        self.db = GoogleSheetsOAuthService(self.client)

    async def test_creates_are_appended_to_the_sheet(self):
        self.assertEqual(self.db.kind, BackendKind.GOOGLE_OAUTH)
        result = await self.db.create_student("bob", "pw", TEACHER_ID)
        self.assertTrue(result.persisted_remotely)
        todo = await self.db.create_todo(ALICE_ID, "walk dog")
        self.assertEqual(self.client.tabs["Users"][-1][1], "bob")
        self.assertEqual(self.client.tabs["Todos"][-1][0], todo.id)
        self.assertEqual(self.db.unsynced_ids, set())

    async def test_updates_are_local_only_and_flagged(self):
        result = await self.db.update_todo("todo-a", {"completed": True})
        self.assertTrue(result)
        self.assertFalse(result.persisted_remotely)
        self.assertIn("todo-a", self.db.unsynced_ids)
        self.assertEqual(self.client.tabs["Todos"][1][3], "false")

    async def test_update_survives_unreachable_remote_until_reload(self):
        await self.db.get_todos(ALICE_ID)
        self.client.unreachable = True

        self.assertTrue(await self.db.update_todo("todo-a", {"completed": True}))
        todos = await self.db.get_todos(ALICE_ID)
        self.assertTrue(todos[0].completed)

        self.client.unreachable = False
        self.assertTrue(await self.db.reload())
        todos = await self.db.get_todos(ALICE_ID)
        self.assertFalse(todos[0].completed)

    async def test_create_falls_back_to_local_when_append_fails(self):
        await self.db.get_todos(ALICE_ID)
        self.client.unreachable = True
        todo = await self.db.create_todo(ALICE_ID, "walk dog")
        self.assertIsNotNone(todo)
        self.assertIn(todo.id, self.db.unsynced_ids)
        self.assertEqual(len(await self.db.get_todos(ALICE_ID)), 2)

    async def test_no_teacher_bootstrap_before_sheet_is_readable(self):
        # Before authorization the sheet cannot be read at all.
        self.client.unreachable = True
        self.assertIsNone(await self.db.login("teacher", "teacher123"))
        self.assertEqual(self.db.users, [])
        self.assertIsNone(await self.db.create_todo(TEACHER_ID, "plan lesson"))

        self.client.unreachable = False
        self.assertTrue(await self.db.reload())
        teacher = await self.db.login("teacher", "teacher123")
        self.assertEqual(teacher.id, TEACHER_ID)
        users = self.client.tabs["Users"][1:]
        self.assertEqual([row[1] for row in users], ["teacher", "alice"])

    async def test_bootstrapped_teacher_is_appended(self):
        client = InMemorySheetsClient()
        db = GoogleSheetsOAuthService(client)
        teacher = await db.login("teacher", "teacher123")
        self.assertEqual(client.tabs["Users"][1][0], teacher.id)
        self.assertEqual(client.tabs["Users"][1][2], "teacher")

    async def test_delete_and_toggle_are_local_only(self):
        self.assertTrue(await self.db.delete_todo("todo-a"))
        self.assertTrue(await self.db.toggle_student_status(ALICE_ID))
        self.assertEqual(len(self.client.tabs["Todos"]), 2)
        self.assertEqual(self.client.tabs["Users"][2][4], "true")
        self.assertEqual(self.db.unsynced_ids, {"todo-a", ALICE_ID})


class GoogleSheetsClientTests(unittest.IsolatedAsyncioTestCase):
    def _http(self, payload=None, error=None):
        response = MagicMock()
        response.json.return_value = payload or {}
        if error is not None:
            response.raise_for_status.side_effect = error
        http = MagicMock()
        http.request.return_value = response
        return http

    def test_requires_configuration(self):
        with self.assertRaises(SheetsNotConfiguredError):
            GoogleSheetsClient(None, api_key="key")
        with self.assertRaises(SheetsNotConfiguredError):
            GoogleSheetsClient("sheet")

    async def test_get_values_with_api_key(self):
        http = self._http({"values": [USERS_HEADER]})
        client = GoogleSheetsClient("sheet", api_key="key", http=http)
        values = await client.get_values("Users!A:F")
        self.assertEqual(values, [USERS_HEADER])
        method, url = http.request.call_args.args
        self.assertEqual(method, "GET")
        self.assertEqual(url, f"{SHEETS_ENDPOINT}/sheet/values/Users!A:F")
        self.assertEqual(http.request.call_args.kwargs["params"], {"key": "key"})

    async def test_append_uses_bearer_token(self):
        async def token():
            return "tok"

        http = self._http({})
        client = GoogleSheetsClient("sheet", token_provider=token, http=http)
        await client.append_values("Todos!A:F", [["a"]])
        method, url = http.request.call_args.args
        kwargs = http.request.call_args.kwargs
        self.assertEqual(method, "POST")
        self.assertTrue(url.endswith("/values/Todos!A:F:append"))
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer tok"})
        self.assertEqual(kwargs["params"]["valueInputOption"], "RAW")
        self.assertEqual(kwargs["json"], {"values": [["a"]]})

    async def test_missing_token_is_a_transport_error(self):
        async def token():
            return None

        client = GoogleSheetsClient("sheet", token_provider=token, http=self._http())
        with self.assertRaises(SheetsTransportError):
            await client.get_values("Users!A:F")

    async def test_non_object_body_is_a_transport_error(self):
        http = self._http(["not", "an", "object"])
        client = GoogleSheetsClient("sheet", api_key="key", http=http)
        with self.assertRaises(SheetsTransportError):
            await client.get_values("Users!A:F")
        db = GoogleSheetsReadOnlyService(client)
        self.assertFalse(await db.reload())
        self.assertEqual(await db.get_todos(ALICE_ID), [])

    async def test_http_errors_are_transport_errors(self):
        http = self._http(error=requests.HTTPError("403 Forbidden"))
        client = GoogleSheetsClient("sheet", api_key="key", http=http)
        with self.assertRaises(SheetsTransportError):
            await client.get_values("Users!A:F")


if __name__ == "__main__":
    unittest.main()
