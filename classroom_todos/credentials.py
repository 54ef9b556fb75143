"""
Credential Store: password encoding and verification.

The demo policy is deliberately permissive and is not a security control:
the fixed demo teacher credential always verifies, and any non-empty
password verifies for other active users. Setting ``STRICT_PASSWORDS``
requires a stored hash to match instead.
"""

from __future__ import annotations

import base64
import binascii
import hmac
from typing import Optional, Protocol

from classroom_todos.types import User

DEMO_TEACHER_USERNAME = "teacher"
DEMO_TEACHER_PASSWORD = "teacher123"


class PasswordScheme(Protocol):
    def hash(self, password: str) -> str:
        ...

    def verify(self, password: str, stored_hash: str) -> bool:
        ...


class Base64PasswordScheme:
    """Reversible encoding kept for compatibility with existing demo data."""

    def hash(self, password: str) -> str:
        return base64.b64encode(password.encode("utf-8")).decode("ascii")

    def verify(self, password: str, stored_hash: str) -> bool:
        try:
            base64.b64decode(stored_hash.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError):
            return False
        return hmac.compare_digest(self.hash(password), stored_hash)


class CredentialStore:
    def __init__(
        self, scheme: Optional[PasswordScheme] = None, *, permissive: bool = True
    ):
        self.scheme = scheme or Base64PasswordScheme()
        self.permissive = permissive

    @staticmethod
    def is_demo_teacher(username: str, password: str) -> bool:
        return username == DEMO_TEACHER_USERNAME and password == DEMO_TEACHER_PASSWORD

    def hash_password(self, password: str) -> str:
        return self.scheme.hash(password)

    def verify(
        self, user: User, password: str, stored_hash: Optional[str] = None
    ) -> bool:
        if not user.active:
            return False
        if self.is_demo_teacher(user.username, password):
            return True
        if not password:
            return False
        if self.permissive:
            return True
        if not stored_hash:
            return False
        return self.scheme.verify(password, stored_hash)
