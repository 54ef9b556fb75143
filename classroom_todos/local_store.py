"""
Persisted local key/value state.

Plays the part browser localStorage plays for a single-page app: string
values (JSON-encoded by callers) under fixed keys. The mock backend keeps
its tables here, the auth session keeps the signed-in identity, and the
OAuth client keeps its tokens.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class LocalStoreUnavailableError(Exception):
    """The backing medium could not be read; absent keys read as ``None``."""


class LocalStore(Protocol):
    """String key/value storage with localStorage semantics."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


def load_json(store: LocalStore, key: str, default=None):
    """Read and decode a JSON value; undecodable values yield ``default``."""
    raw = store.get_item(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable value stored under %s", key)
        return default


def save_json(store: LocalStore, key: str, value) -> None:
    store.set_item(key, json.dumps(value, ensure_ascii=False))


@dataclass
class InMemoryLocalStore:
    """Test double and throwaway dev store."""

    items: dict = field(default_factory=dict)

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)

    def reset(self) -> None:
        self.items.clear()


@dataclass
class FileLocalStore:
    """
    Single JSON object on disk. Every write rewrites the file atomically.
    """

    path: str

    def __post_init__(self):
        self._path = Path(self.path)
        self._items = self._read()

    def _read(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.exception("Could not read local store at %s", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Local store at %s is not an object; ignoring", self._path)
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._path.parent), prefix=".local_store.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._items, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self._path)
        except OSError:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if key in self._items:
            del self._items[key]
            self._flush()


@dataclass
class RedisLocalStore:
    """Redis-backed store so several workers can share one local state."""

    url: str
    key_prefix: str = "classroom-todos:"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get_item(self, key: str) -> Optional[str]:
        try:
            return self.client.get(self._key(key))
        except redis_exceptions.ConnectionError as e:
            raise LocalStoreUnavailableError(
                f"Redis unavailable while reading {key}"
            ) from e

    def set_item(self, key: str, value: str) -> None:
        self.client.set(self._key(key), value)

    def remove_item(self, key: str) -> None:
        self.client.delete(self._key(key))
