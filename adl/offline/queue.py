"""
Offline submission queue.

Submissions captured without connectivity are kept here and delivered
later. Each item carries an idempotency key so a delivery that reached the
server but whose response was lost cannot create a second event.

Item lifecycle:
    pending -> syncing -> removed (delivered)
                       -> failed (retry scheduled with capped backoff)
                       -> removed and archived as a sync error (permanent)
"""

import asyncio
import heapq
import logging
import random
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from adl.core.constants import RETRY_BASE_DELAY_MS, RETRY_JITTER_MS, RETRY_MAX_DELAY_MS
from adl.crowdsource.events import format_timestamp, timestamp_sort_key
from adl.offline.sync import to_submission_sync_error

logger = logging.getLogger(__name__)

SendFn = Callable[..., Awaitable[Any]]


class QueueStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"
    SYNCED = "synced"


@dataclass
class QueueItem:
    """A submission waiting for delivery."""
    id: str
    idempotency_key: str
    payload: Dict[str, Any]
    created_at: str
    updated_at: str
    status: QueueStatus = QueueStatus.PENDING
    attempts: int = 0
    retry_count: int = 0
    next_retry_at: Optional[float] = None  # epoch ms
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "idempotencyKey": self.idempotency_key,
            "payload": self.payload,
            "status": self.status.value,
            "attempts": self.attempts,
            "retryCount": self.retry_count,
            "nextRetryAt": self.next_retry_at,
            "lastError": self.last_error,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class SyncErrorRecord:
    """A submission the server rejected permanently."""
    id: str
    queue_item_id: str
    message: str
    status: Optional[int]
    payload_summary: Dict[str, Any]
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queueItemId": self.queue_item_id,
            "message": self.message,
            "status": self.status,
            "payloadSummary": self.payload_summary,
            "createdAt": self.created_at,
        }


@dataclass(frozen=True)
class QueueSyncSummary:
    synced: int = 0
    failed: int = 0
    permanently_failed: int = 0
    remaining: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "synced": self.synced,
            "failed": self.failed,
            "permanentlyFailed": self.permanently_failed,
            "remaining": self.remaining,
        }


@dataclass(order=True)
class _ScheduleEntry:
    due_at: float
    created_at: Any
    seq: int
    item: QueueItem = field(compare=False)


def summarize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only what an error log needs; photos and details are dropped."""
    return {
        "eventType": payload.get("eventType"),
        "category": payload.get("category"),
        "pointId": payload.get("pointId"),
        "location": payload.get("location"),
    }


def retry_delay_ms(retry_count: int, rng: Optional[random.Random] = None) -> float:
    """Capped exponential backoff with up to a second of jitter."""
    rng = rng or random
    return min(RETRY_MAX_DELAY_MS, RETRY_BASE_DELAY_MS * 2 ** retry_count) + rng.uniform(0, RETRY_JITTER_MS)


class OfflineQueue:
    """
    Durable client-side queue of submissions.

    Args:
        store: QueueStore persisting items and sync errors
        clock: Returns the current time in epoch milliseconds
        rng: Random source for backoff jitter
    """

    def __init__(
        self,
        store,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.clock = clock or (lambda: time.time() * 1000)
        self.rng = rng or random.Random()
        self._inflight: Optional[asyncio.Task] = None

    def _now_iso(self) -> str:
        return format_timestamp(datetime.fromtimestamp(self.clock() / 1000, tz=timezone.utc))

    async def enqueue(self, payload: Dict[str, Any]) -> QueueItem:
        """Add a submission with a fresh id and idempotency key."""
        now = self._now_iso()
        item = QueueItem(
            id=str(uuid.uuid4()),
            idempotency_key=str(uuid.uuid4()),
            payload=dict(payload),
            created_at=now,
            updated_at=now,
        )
        await self.store.put_item(item)
        logger.info(f"Queued submission {item.id}")
        return item

    async def list_items(self) -> List[QueueItem]:
        """Queued items in creation order."""
        items = await self.store.list_items()
        return sorted(items, key=lambda item: timestamp_sort_key(item.created_at))

    async def list_sync_errors(self) -> List[SyncErrorRecord]:
        return await self.store.list_sync_errors()

    async def dismiss_sync_error(self, error_id: str) -> bool:
        return await self.store.delete_sync_error(error_id)

    async def stats(self) -> Dict[str, int]:
        items = await self.store.list_items()
        return {
            "pending": sum(1 for i in items if i.status in (QueueStatus.PENDING, QueueStatus.SYNCING)),
            "failed": sum(1 for i in items if i.status == QueueStatus.FAILED),
            "total": len(items),
            "syncErrors": len(await self.store.list_sync_errors()),
        }

    async def next_due_at(self) -> Optional[float]:
        """Earliest time (epoch ms) at which an item becomes due, or None."""
        items = await self.store.list_items()
        if not items:
            return None
        return min(item.next_retry_at or 0 for item in items)

    async def flush(self, send_fn: SendFn) -> QueueSyncSummary:
        """
        Deliver every due item once, sequentially in creation order.

        A flush started while another is running waits for that one and
        returns its summary.

        Args:
            send_fn: ``await send_fn(payload, idempotency_key=...)``; raises
                on failure (SubmissionSyncError decides retryability)

        Returns:
            QueueSyncSummary
        """
        if self._inflight is not None and not self._inflight.done():
            logger.debug("Flush already in progress; joining it")
            return await asyncio.shield(self._inflight)

        self._inflight = asyncio.ensure_future(self._flush(send_fn))
        try:
            return await asyncio.shield(self._inflight)
        finally:
            if self._inflight is not None and self._inflight.done():
                self._inflight = None

    def _due_items(self, items: List[QueueItem], now: float) -> List[QueueItem]:
        schedule: List[_ScheduleEntry] = []
        for seq, item in enumerate(items):
            heapq.heappush(
                schedule,
                _ScheduleEntry(item.next_retry_at or 0, timestamp_sort_key(item.created_at), seq, item),
            )

        due = []
        while schedule and schedule[0].due_at <= now:
            due.append(heapq.heappop(schedule))
        due.sort(key=lambda entry: (entry.created_at, entry.seq))
        return [entry.item for entry in due]

    async def _flush(self, send_fn: SendFn) -> QueueSyncSummary:
        items = await self.store.list_items()
        synced = failed = permanently_failed = 0

        for item in self._due_items(items, self.clock()):
            item = replace(
                item,
                status=QueueStatus.SYNCING,
                attempts=item.attempts + 1,
                updated_at=self._now_iso(),
            )
            await self.store.put_item(item)

            try:
                await send_fn(item.payload, idempotency_key=item.idempotency_key)
            except Exception as e:
                error = to_submission_sync_error(e)
                if error.retryable:
                    failed += 1
                    retry_count = item.retry_count + 1
                    await self.store.put_item(replace(
                        item,
                        status=QueueStatus.FAILED,
                        retry_count=retry_count,
                        next_retry_at=self.clock() + retry_delay_ms(retry_count, self.rng),
                        last_error=error.message,
                        updated_at=self._now_iso(),
                    ))
                    logger.info(f"Submission {item.id} failed (retry {retry_count}): {error.message}")
                else:
                    permanently_failed += 1
                    await self.store.add_sync_error(SyncErrorRecord(
                        id=str(uuid.uuid4()),
                        queue_item_id=item.id,
                        message=error.message,
                        status=error.status,
                        payload_summary=summarize_payload(item.payload),
                        created_at=self._now_iso(),
                    ))
                    await self.store.delete_item(item.id)
                    logger.warning(f"Submission {item.id} rejected permanently: {error.message}")
                continue

            await self.store.delete_item(item.id)
            synced += 1

        remaining = len(await self.store.list_items())
        summary = QueueSyncSummary(
            synced=synced,
            failed=failed,
            permanently_failed=permanently_failed,
            remaining=remaining,
        )
        logger.info(f"Queue flush: {summary.to_dict()}")
        return summary
