"""
Per-tab cache for plans, apply summaries and errors.

Cache-aside with two tiers:
- an in-memory dict, authoritative for reads within the process
- an aiosqlite table, best-effort persistence across restarts

Writes land in memory synchronously and are persisted in the background.
The durable tier may lag the memory tier; `load()` only falls back to it
when the memory tier has nothing for the key.
"""

import asyncio
import json
import time
from pathlib import Path
from typing import Any

import aiosqlite
from pydantic import BaseModel

from pdpkit.utils.config import get_project_root, get_settings
from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tab_cache (
    namespace TEXT NOT NULL,
    tab_id INTEGER NOT NULL,
    value TEXT NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (namespace, tab_id)
)
"""

_MISSING = object()


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class TabCache:
    """Two-tier cache keyed by (namespace, tab_id)."""

    def __init__(self, db_path: str | Path | None = None, durable: bool | None = None):
        """Initialize the cache.

        Args:
            db_path: SQLite file for the durable tier. Uses settings if None.
            durable: Enable the durable tier. Uses settings if None.
        """
        settings = get_settings().cache
        if db_path is None:
            db_path = get_project_root() / settings.durable_path
        self.db_path = Path(db_path)
        self.durable = settings.durable_enabled if durable is None else durable

        self._memory: dict[tuple[str, int], Any] = {}
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._pending: set[asyncio.Task[None]] = set()

    # -------------------------------------------------------------------------
    # memory tier
    # -------------------------------------------------------------------------

    def get(self, namespace: str, tab_id: int, default: Any = None) -> Any:
        return self._memory.get((namespace, tab_id), default)

    def set(self, namespace: str, tab_id: int, value: Any) -> None:
        self._memory[(namespace, tab_id)] = value
        self._schedule(self._persist(namespace, tab_id, value))

    def clear(self, namespace: str, tab_id: int) -> None:
        self._memory.pop((namespace, tab_id), None)
        self._schedule(self._delete(namespace, tab_id))

    def namespaces(self, tab_id: int) -> list[str]:
        return [ns for (ns, tid) in self._memory if tid == tab_id]

    # -------------------------------------------------------------------------
    # durable tier
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the durable store and create its table."""
        if not self.durable or self._connection is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self.db_path, isolation_level=None)
        await self._connection.execute("PRAGMA journal_mode = WAL")
        await self._connection.execute(_SCHEMA)
        logger.info("Tab cache connected", path=str(self.db_path))

    async def close(self) -> None:
        await self.flush()
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Tab cache closed")

    async def flush(self) -> None:
        """Wait for background writes scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def load(self, namespace: str, tab_id: int, default: Any = None) -> Any:
        """Read through: memory first, then the durable store.

        Durable hits are returned as decoded JSON and copied into memory.
        """
        value = self._memory.get((namespace, tab_id), _MISSING)
        if value is not _MISSING:
            return value
        if self._connection is None:
            return default

        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT value FROM tab_cache WHERE namespace = ? AND tab_id = ?",
                (namespace, tab_id),
            )
            row = await cursor.fetchone()
        if row is None:
            return default

        decoded = json.loads(row[0])
        self._memory[(namespace, tab_id)] = decoded
        return decoded

    def _schedule(self, coro: Any) -> None:
        if self._connection is None:
            coro.close()
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, namespace: str, tab_id: int, value: Any) -> None:
        try:
            encoded = json.dumps(value, default=_to_jsonable, ensure_ascii=False)
            async with self._lock:
                if self._connection is None:
                    return
                await self._connection.execute(
                    "INSERT OR REPLACE INTO tab_cache (namespace, tab_id, value, updated_at) "
                    "VALUES (?, ?, ?, ?)",
                    (namespace, tab_id, encoded, time.time()),
                )
        except (TypeError, ValueError, aiosqlite.Error) as e:
            logger.warning(
                "Tab cache persist failed",
                namespace=namespace,
                tab_id=tab_id,
                error=str(e),
            )

    async def _delete(self, namespace: str, tab_id: int) -> None:
        try:
            async with self._lock:
                if self._connection is None:
                    return
                await self._connection.execute(
                    "DELETE FROM tab_cache WHERE namespace = ? AND tab_id = ?",
                    (namespace, tab_id),
                )
        except aiosqlite.Error as e:
            logger.warning("Tab cache delete failed", namespace=namespace, tab_id=tab_id, error=str(e))
