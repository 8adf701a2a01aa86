"""
ADL Contributions - Offline Module
Client-side queue for submissions made without connectivity.
"""

from adl.offline.sync import (
    SubmissionSender,
    SubmissionSyncError,
    to_submission_sync_error,
)
from adl.offline.queue import (
    OfflineQueue,
    QueueItem,
    QueueStatus,
    QueueSyncSummary,
    SyncErrorRecord,
)
from adl.offline.store import (
    QueueStore,
    MemoryQueueStore,
    SqliteQueueStore,
)

__all__ = [
    "SubmissionSender",
    "SubmissionSyncError",
    "to_submission_sync_error",
    "OfflineQueue",
    "QueueItem",
    "QueueStatus",
    "QueueSyncSummary",
    "SyncErrorRecord",
    "QueueStore",
    "MemoryQueueStore",
    "SqliteQueueStore",
]
