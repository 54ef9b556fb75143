import json
import unittest
from unittest.mock import AsyncMock, patch

from classroom_todos.auth import CREDENTIAL_ERROR, SESSION_KEY, AuthSession, SessionState
from classroom_todos.db import MockDatabaseService
from classroom_todos.local_store import InMemoryLocalStore, LocalStoreUnavailableError
from classroom_todos.types import Role, User

USER_ID = "9a3e7c52-61d4-4f0b-8d2e-3b1f5a6c7d80"


class AuthSessionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = InMemoryLocalStore()
        self.db = MockDatabaseService(self.store)
        self.auth = AuthSession(self.db, self.store)

    def test_starts_unauthenticated(self):
        self.assertIsNone(self.auth.restore())
        self.assertEqual(self.auth.state, SessionState.UNAUTHENTICATED)
        self.assertIsNone(self.auth.current_user)

    def test_restore_accepts_uuid_identity(self):
        user = User(id=USER_ID, username="alice", role=Role.STUDENT)
        self.store.set_item(SESSION_KEY, json.dumps(user.as_dict()))
        restored = self.auth.restore()
        self.assertEqual(restored.id, USER_ID)
        self.assertEqual(self.auth.state, SessionState.AUTHENTICATED)
        self.assertEqual(self.auth.current_user.username, "alice")

    def test_restore_with_unreadable_store_stays_signed_out(self):
        user = User(id=USER_ID, username="alice", role=Role.STUDENT)
        self.store.set_item(SESSION_KEY, json.dumps(user.as_dict()))
        with patch.object(
            self.store, "get_item", side_effect=LocalStoreUnavailableError(SESSION_KEY)
        ):
            self.assertIsNone(self.auth.restore())
        self.assertEqual(self.auth.state, SessionState.UNAUTHENTICATED)
        self.assertIsNotNone(self.store.get_item(SESSION_KEY))

    def test_restore_discards_legacy_id(self):
        user = User(id="teacher_1", username="teacher", role=Role.TEACHER)
        self.store.set_item(SESSION_KEY, json.dumps(user.as_dict()))
        self.assertIsNone(self.auth.restore())
        self.assertIsNone(self.store.get_item(SESSION_KEY))
        self.assertEqual(self.auth.state, SessionState.UNAUTHENTICATED)

    def test_restore_discards_malformed_value(self):
        for raw in ("{not json", json.dumps({"username": "x"}), json.dumps([1, 2])):
            self.store.set_item(SESSION_KEY, raw)
            self.assertIsNone(self.auth.restore())
            self.assertIsNone(self.store.get_item(SESSION_KEY))

    async def test_login_persists_identity(self):
        self.assertTrue(await self.auth.login("teacher", "teacher123"))
        self.assertEqual(self.auth.state, SessionState.AUTHENTICATED)
        self.assertIsNone(self.auth.error)
        stored = json.loads(self.store.get_item(SESSION_KEY))
        self.assertEqual(stored["username"], "teacher")
        self.assertIsNotNone(self.auth.session.established_at)

    async def test_failed_login_sets_error(self):
        self.assertFalse(await self.auth.login("nobody", "pw"))
        self.assertEqual(self.auth.state, SessionState.UNAUTHENTICATED)
        self.assertEqual(self.auth.error, CREDENTIAL_ERROR)
        self.assertIsNone(self.store.get_item(SESSION_KEY))

    async def test_backend_exception_is_a_failed_login(self):
        db = AsyncMock()
        db.login.side_effect = RuntimeError("boom")
        auth = AuthSession(db, self.store)
        self.assertFalse(await auth.login("teacher", "teacher123"))
        self.assertEqual(auth.error, CREDENTIAL_ERROR)

    async def test_logout_clears_identity(self):
        await self.auth.login("teacher", "teacher123")
        self.auth.logout()
        self.assertIsNone(self.auth.current_user)
        self.assertIsNone(self.store.get_item(SESSION_KEY))
        self.assertEqual(self.auth.state, SessionState.UNAUTHENTICATED)


if __name__ == "__main__":
    unittest.main()
