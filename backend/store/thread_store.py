"""In-memory thread store.

Holds the authoritative state of every conversation thread for the life of
the process, along with a checkpoint history per thread. Nothing is
persisted; restarting the server forgets every thread.

Usage:
    >>> store = ThreadStore()
    >>> record = store.create()
    >>> store.bind(record.thread_id, flow)
    >>> store.claim_run(record.thread_id)
    >>> store.set_status(record.thread_id, ThreadStatus.RUNNING)
"""

import copy
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from agents.channels import ChannelTable
from models.generation import utc_now_iso

if TYPE_CHECKING:
    from agents.engine import Flow

logger = structlog.get_logger(__name__)

CHECKPOINT_NS = "inmemory"


class ThreadNotFoundError(KeyError):
    """No thread exists with the requested id."""

    def __init__(self, thread_id: str) -> None:
        super().__init__(thread_id)
        self.thread_id = thread_id

    def __str__(self) -> str:
        return f"Thread {self.thread_id} not found"


class ThreadBusyError(RuntimeError):
    """A run is already active on the thread."""


class AssistantMismatchError(ValueError):
    """The thread is bound to a different pipeline variant."""


class ThreadStatus(StrEnum):
    """Lifecycle of a thread between runs.

    idle: no run yet, or the last run failed (resumable)
    running: a run is executing
    waiting: the last run suspended for human approval
    completed: the last run reached a terminal state
    """

    IDLE = "idle"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"


@dataclass
class ThreadRecord:
    """One conversation thread.

    Attributes:
        thread_id: Opaque thread identifier
        metadata: Client-supplied metadata (always has a ``writes`` key)
        values: The thread's state; empty until bound to an assistant
        status: Current ThreadStatus
        assistant_id: Pipeline variant the thread is bound to, if any
        checkpoint: Id of the latest checkpoint, if any
    """

    thread_id: str
    metadata: dict[str, Any] = field(default_factory=lambda: {"writes": {}})
    values: dict[str, Any] = field(default_factory=dict)
    status: ThreadStatus = ThreadStatus.IDLE
    assistant_id: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    checkpoint: str | None = None

    def touch(self) -> None:
        self.updated_at = utc_now_iso()


@dataclass
class HistoryEntry:
    """A snapshot of a thread taken when a checkpoint is recorded."""

    checkpoint_id: str
    parent_checkpoint_id: str | None
    values: dict[str, Any]
    metadata: dict[str, Any]
    created_at: str = field(default_factory=utc_now_iso)


class ThreadStore:
    """Keyed map of threads plus their checkpoint history.

    Each thread's state is only mutated by the single run holding its run
    lock, or by direct state updates from the API.
    """

    def __init__(self) -> None:
        self._threads: dict[str, ThreadRecord] = {}
        self._history: dict[str, list[HistoryEntry]] = {}
        self._active_runs: set[str] = set()
        logger.info("thread_store_initialized")

    def create(
        self,
        thread_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
        assistant_id: str | None = None,
    ) -> ThreadRecord:
        """Create a thread. Returns the existing record if the id is taken."""
        thread_id = thread_id or str(uuid.uuid4())
        existing = self._threads.get(thread_id)
        if existing is not None:
            return existing

        record = ThreadRecord(
            thread_id=thread_id,
            metadata={"writes": {}, **(metadata or {})},
            assistant_id=assistant_id,
        )
        self._threads[thread_id] = record
        self._history[thread_id] = []
        logger.info("thread_created", thread_id=thread_id)
        return record

    def get(self, thread_id: str) -> ThreadRecord:
        """Get a thread.

        Raises:
            ThreadNotFoundError: If the thread does not exist.
        """
        record = self._threads.get(thread_id)
        if record is None:
            raise ThreadNotFoundError(thread_id)
        return record

    def get_or_create(self, thread_id: str) -> ThreadRecord:
        return self._threads.get(thread_id) or self.create(thread_id)

    def bind(self, thread_id: str, flow: "Flow") -> ThreadRecord:
        """Bind a thread to a flow, initializing its state on first use.

        Raises:
            AssistantMismatchError: If the thread already belongs to another flow.
        """
        record = self.get(thread_id)
        if record.assistant_id is not None and record.assistant_id != flow.assistant_id:
            raise AssistantMismatchError(
                f"Thread {thread_id} is bound to assistant {record.assistant_id}, "
                f"not {flow.assistant_id}"
            )
        if record.assistant_id is None or not record.values:
            record.assistant_id = flow.assistant_id
            record.values = flow.initial_state(thread_id)
            record.touch()
            logger.info("thread_bound", thread_id=thread_id, assistant_id=flow.assistant_id)
        return record

    def update(
        self,
        thread_id: str,
        partial: Mapping[str, Any],
        channels: ChannelTable,
    ) -> ThreadRecord:
        """Merge a partial update into the thread's state via its reducers."""
        record = self.get(thread_id)
        record.values = channels.merge(record.values, partial)
        record.touch()
        return record

    def replace_values(self, thread_id: str, values: Mapping[str, Any]) -> ThreadRecord:
        """Commit a full state produced by a run."""
        record = self.get(thread_id)
        record.values = dict(values)
        record.touch()
        return record

    def update_metadata(self, thread_id: str, metadata: Mapping[str, Any]) -> ThreadRecord:
        record = self.get(thread_id)
        record.metadata = {**record.metadata, **metadata}
        record.touch()
        return record

    def set_status(self, thread_id: str, status: ThreadStatus) -> ThreadRecord:
        record = self.get(thread_id)
        record.status = status
        record.touch()
        logger.debug("thread_status_changed", thread_id=thread_id, status=status.value)
        return record

    def set_checkpoint(self, thread_id: str, checkpoint_id: str | None = None) -> ThreadRecord:
        record = self.get(thread_id)
        record.checkpoint = checkpoint_id
        record.touch()
        return record

    def record_history(self, thread_id: str, checkpoint_id: str) -> HistoryEntry:
        """Snapshot the thread under ``checkpoint_id``, linked to the previous one."""
        record = self.get(thread_id)
        entries = self._history.setdefault(thread_id, [])
        entry = HistoryEntry(
            checkpoint_id=checkpoint_id,
            parent_checkpoint_id=entries[-1].checkpoint_id if entries else None,
            values=copy.deepcopy(record.values),
            metadata=copy.deepcopy(record.metadata),
        )
        entries.append(entry)
        return entry

    def history(self, thread_id: str) -> list[HistoryEntry]:
        """Checkpoint history, oldest first.

        A thread without recorded checkpoints reports its current state as a
        single synthetic entry.
        """
        record = self.get(thread_id)
        entries = self._history.get(thread_id) or []
        if entries:
            return [copy.deepcopy(entry) for entry in entries]
        return [
            HistoryEntry(
                checkpoint_id=record.checkpoint or f"{thread_id}-checkpoint",
                parent_checkpoint_id=None,
                values=copy.deepcopy(record.values),
                metadata=copy.deepcopy(record.metadata),
                created_at=record.updated_at,
            )
        ]

    def is_running(self, thread_id: str) -> bool:
        return thread_id in self._active_runs

    def claim_run(self, thread_id: str) -> ThreadRecord:
        """Take the thread's run slot.

        Raises:
            ThreadNotFoundError: If the thread does not exist.
            ThreadBusyError: If another run holds the slot.
        """
        record = self.get(thread_id)
        if thread_id in self._active_runs:
            raise ThreadBusyError(f"Thread {thread_id} already has an active run")
        self._active_runs.add(thread_id)
        return record

    def release_run(self, thread_id: str) -> None:
        self._active_runs.discard(thread_id)
