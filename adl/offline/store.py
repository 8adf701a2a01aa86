"""
Persistence for the offline submission queue.

SqliteQueueStore keeps items and sync errors across restarts; blocking
sqlite calls run in a worker thread.
"""

import asyncio
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Dict, List, Optional

from adl.core.config import settings
from adl.offline.queue import QueueItem, QueueStatus, SyncErrorRecord

logger = logging.getLogger(__name__)


class QueueStore(ABC):
    """Storage for queue items and archived sync errors."""

    @abstractmethod
    async def put_item(self, item: QueueItem) -> None:
        """Insert or replace an item."""

    @abstractmethod
    async def list_items(self) -> List[QueueItem]:
        """Items in insertion order."""

    @abstractmethod
    async def delete_item(self, item_id: str) -> None:
        """Remove an item; unknown ids are ignored."""

    @abstractmethod
    async def add_sync_error(self, record: SyncErrorRecord) -> None:
        """Archive a permanently failed submission."""

    @abstractmethod
    async def list_sync_errors(self) -> List[SyncErrorRecord]:
        """Archived errors, oldest first."""

    @abstractmethod
    async def delete_sync_error(self, error_id: str) -> bool:
        """Dismiss an archived error; False when it did not exist."""


class MemoryQueueStore(QueueStore):

    def __init__(self):
        self.items: Dict[str, QueueItem] = {}
        self.sync_errors: Dict[str, SyncErrorRecord] = {}

    async def put_item(self, item: QueueItem) -> None:
        self.items[item.id] = item

    async def list_items(self) -> List[QueueItem]:
        return list(self.items.values())

    async def delete_item(self, item_id: str) -> None:
        self.items.pop(item_id, None)

    async def add_sync_error(self, record: SyncErrorRecord) -> None:
        self.sync_errors[record.id] = record

    async def list_sync_errors(self) -> List[SyncErrorRecord]:
        return list(self.sync_errors.values())

    async def delete_sync_error(self, error_id: str) -> bool:
        return self.sync_errors.pop(error_id, None) is not None


class SqliteQueueStore(QueueStore):
    """
    SQLite-backed queue store.

    Args:
        path: Database file (defaults to the configured queue path)
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or settings.offline_queue_path)
        self._initialize()
        logger.info(f"SqliteQueueStore ready at {self.path}")

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.path))

    def _initialize(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS submission_queue (
                    id TEXT PRIMARY KEY,
                    idempotency_key TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    status TEXT NOT NULL,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    next_retry_at REAL,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_errors (
                    id TEXT PRIMARY KEY,
                    queue_item_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    status INTEGER,
                    payload_summary TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )

    # Synchronous operations, run via asyncio.to_thread

    def _put_item(self, item: QueueItem) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT INTO submission_queue (
                    id, idempotency_key, payload, status, attempts, retry_count,
                    next_retry_at, last_error, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    payload = excluded.payload,
                    status = excluded.status,
                    attempts = excluded.attempts,
                    retry_count = excluded.retry_count,
                    next_retry_at = excluded.next_retry_at,
                    last_error = excluded.last_error,
                    updated_at = excluded.updated_at
                """,
                (
                    item.id,
                    item.idempotency_key,
                    json.dumps(item.payload),
                    item.status.value,
                    item.attempts,
                    item.retry_count,
                    item.next_retry_at,
                    item.last_error,
                    item.created_at,
                    item.updated_at,
                ),
            )

    def _list_items(self) -> List[QueueItem]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """
                SELECT id, idempotency_key, payload, status, attempts, retry_count,
                       next_retry_at, last_error, created_at, updated_at
                FROM submission_queue ORDER BY rowid
                """
            ).fetchall()
        return [
            QueueItem(
                id=row[0],
                idempotency_key=row[1],
                payload=json.loads(row[2]),
                status=QueueStatus(row[3]),
                attempts=row[4],
                retry_count=row[5],
                next_retry_at=row[6],
                last_error=row[7],
                created_at=row[8],
                updated_at=row[9],
            )
            for row in rows
        ]

    def _delete_item(self, item_id: str) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute("DELETE FROM submission_queue WHERE id = ?", (item_id,))

    def _add_sync_error(self, record: SyncErrorRecord) -> None:
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO sync_errors (
                    id, queue_item_id, message, status, payload_summary, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.queue_item_id,
                    record.message,
                    record.status,
                    json.dumps(record.payload_summary),
                    record.created_at,
                ),
            )

    def _list_sync_errors(self) -> List[SyncErrorRecord]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                """
                SELECT id, queue_item_id, message, status, payload_summary, created_at
                FROM sync_errors ORDER BY rowid
                """
            ).fetchall()
        return [
            SyncErrorRecord(
                id=row[0],
                queue_item_id=row[1],
                message=row[2],
                status=row[3],
                payload_summary=json.loads(row[4]),
                created_at=row[5],
            )
            for row in rows
        ]

    def _delete_sync_error(self, error_id: str) -> bool:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute("DELETE FROM sync_errors WHERE id = ?", (error_id,))
            return cursor.rowcount > 0

    async def put_item(self, item: QueueItem) -> None:
        await asyncio.to_thread(self._put_item, item)

    async def list_items(self) -> List[QueueItem]:
        return await asyncio.to_thread(self._list_items)

    async def delete_item(self, item_id: str) -> None:
        await asyncio.to_thread(self._delete_item, item_id)

    async def add_sync_error(self, record: SyncErrorRecord) -> None:
        await asyncio.to_thread(self._add_sync_error, record)

    async def list_sync_errors(self) -> List[SyncErrorRecord]:
        return await asyncio.to_thread(self._list_sync_errors)

    async def delete_sync_error(self, error_id: str) -> bool:
        return await asyncio.to_thread(self._delete_sync_error, error_id)
