"""Seen-line stores used for duplicate suppression."""

from __future__ import annotations

import sqlite3
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import AuthenticationError, NoPermissionError, RedisError

from ..errors import DedupStoreUnavailable, FatalAuthFailure
from ..infra.storage import SQLiteManager


class DeduplicationStore(ABC):
    """Key presence store shared by every source and process instance."""

    @abstractmethod
    async def exists(self, key: bytes) -> bool:
        """True if the key was marked earlier (and has not expired)."""

    @abstractmethod
    async def mark(self, key: bytes) -> None:
        """Record the key as seen."""

    async def close(self) -> None:
        """Release underlying resources."""


class RedisDeduplicationStore(DeduplicationStore):
    """``EXISTS`` / ``SET`` against a shared Redis instance."""

    def __init__(self, client: Redis, ttl_seconds: int | None = None) -> None:
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def exists(self, key: bytes) -> bool:
        try:
            found = await self.client.exists(key)
        except (AuthenticationError, NoPermissionError) as exc:
            raise FatalAuthFailure("redis", exc) from exc
        except RedisError as exc:
            raise DedupStoreUnavailable("exists", exc) from exc
        return found > 0

    async def mark(self, key: bytes) -> None:
        try:
            await self.client.set(key, 0, ex=self.ttl_seconds)
        except (AuthenticationError, NoPermissionError) as exc:
            raise FatalAuthFailure("redis", exc) from exc
        except RedisError as exc:
            raise DedupStoreUnavailable("mark", exc) from exc

    async def close(self) -> None:
        await self.client.aclose()


class SQLiteDeduplicationStore(DeduplicationStore):
    """Single-host store kept in a SQLite file; expiry is checked on lookup."""

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._conn = self.manager.connect(db_path)

    async def exists(self, key: bytes) -> bool:
        try:
            row = self._conn.execute(
                "SELECT marked_at FROM seen_lines WHERE dedup_key = ?", (key,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise DedupStoreUnavailable("exists", exc) from exc
        if row is None:
            return False
        if self.ttl_seconds is None:
            return True
        return self._clock() - row["marked_at"] < self.ttl_seconds

    async def mark(self, key: bytes) -> None:
        try:
            self._conn.execute(
                "INSERT OR REPLACE INTO seen_lines(dedup_key, marked_at) VALUES (?, ?)",
                (key, self._clock()),
            )
        except sqlite3.Error as exc:
            raise DedupStoreUnavailable("mark", exc) from exc

    def purge_expired(self) -> int:
        """Delete expired rows; returns the number removed."""

        if self.ttl_seconds is None:
            return 0
        cur = self._conn.execute(
            "DELETE FROM seen_lines WHERE marked_at <= ?", (self._clock() - self.ttl_seconds,)
        )
        return cur.rowcount

    async def close(self) -> None:
        self.purge_expired()
        self.manager.close(self.db_path)


class InMemoryDeduplicationStore(DeduplicationStore):
    """Process-local store for dry runs and tests."""

    def __init__(self, ttl_seconds: int | None = None, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._marked: dict[bytes, float] = {}

    async def exists(self, key: bytes) -> bool:
        marked_at = self._marked.get(key)
        if marked_at is None:
            return False
        if self.ttl_seconds is not None and self._clock() - marked_at >= self.ttl_seconds:
            del self._marked[key]
            return False
        return True

    async def mark(self, key: bytes) -> None:
        self._marked[key] = self._clock()

    def __len__(self) -> int:
        return len(self._marked)


__all__ = [
    "DeduplicationStore",
    "InMemoryDeduplicationStore",
    "RedisDeduplicationStore",
    "SQLiteDeduplicationStore",
]
