"""In-memory session (thread) store."""

from store.thread_store import (
    CHECKPOINT_NS,
    AssistantMismatchError,
    HistoryEntry,
    ThreadBusyError,
    ThreadNotFoundError,
    ThreadRecord,
    ThreadStatus,
    ThreadStore,
)

__all__ = [
    "CHECKPOINT_NS",
    "AssistantMismatchError",
    "HistoryEntry",
    "ThreadBusyError",
    "ThreadNotFoundError",
    "ThreadRecord",
    "ThreadStatus",
    "ThreadStore",
]
