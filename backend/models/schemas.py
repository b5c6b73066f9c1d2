"""Pydantic schemas for API request/response models.

This module defines the data models used by the HTTP API. Thread state values
are passed through as plain dicts: their shape depends on the assistant the
thread is bound to.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from store.thread_store import CHECKPOINT_NS, HistoryEntry, ThreadRecord, ThreadStatus


class ThreadCreate(BaseModel):
    """Request body for creating a thread."""

    thread_id: str | None = Field(
        default=None,
        description="Optional thread id; a UUID is generated when omitted",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Client metadata stored with the thread",
    )
    assistant_id: str | None = Field(
        default=None,
        description="Bind the thread to this assistant up front",
        examples=["v0-generator-subgraphs", "v0-generator"],
    )


class ThreadResponse(BaseModel):
    """A thread without its state values."""

    thread_id: str = Field(description="Unique thread identifier")
    status: ThreadStatus = Field(description="Current thread status")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(description="ISO-8601 creation time")
    updated_at: str = Field(description="ISO-8601 time of the last change")

    @classmethod
    def from_record(cls, record: ThreadRecord) -> "ThreadResponse":
        return cls(
            thread_id=record.thread_id,
            status=record.status,
            metadata=record.metadata,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class CheckpointRef(BaseModel):
    checkpoint_id: str
    checkpoint_ns: str = CHECKPOINT_NS


class ThreadStateResponse(BaseModel):
    """Current state of a thread, serialized for the wire."""

    thread_id: str
    values: dict[str, Any] = Field(description="camelCase state values")
    metadata: dict[str, Any] = Field(default_factory=dict)
    checkpoint: CheckpointRef | None = None


class StateUpdateRequest(BaseModel):
    """Request body for writing to a thread's state outside a run."""

    model_config = ConfigDict(extra="ignore")

    values: dict[str, Any] = Field(
        default_factory=dict,
        description="Partial state; keys may be camelCase or snake_case",
        examples=[{"userApproval": True}],
    )
    as_node: str | None = Field(
        default=None,
        description="Step the write is attributed to in thread metadata",
    )


class StateUpdateResponse(BaseModel):
    checkpoint: CheckpointRef


class HistoryRequest(BaseModel):
    """Request body for fetching checkpoint history."""

    limit: int | None = Field(
        default=None,
        ge=1,
        description="Return only the newest N checkpoints",
    )


class HistoryEntryResponse(BaseModel):
    """One checkpoint in a thread's history."""

    checkpoint: CheckpointRef
    parent_checkpoint: CheckpointRef | None = None
    values: dict[str, Any]
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str

    @classmethod
    def from_entry(
        cls, entry: HistoryEntry, values: dict[str, Any]
    ) -> "HistoryEntryResponse":
        parent = (
            CheckpointRef(checkpoint_id=entry.parent_checkpoint_id)
            if entry.parent_checkpoint_id
            else None
        )
        return cls(
            checkpoint=CheckpointRef(checkpoint_id=entry.checkpoint_id),
            parent_checkpoint=parent,
            values=values,
            metadata=entry.metadata,
            created_at=entry.created_at,
        )


class RunStreamRequest(BaseModel):
    """Request body for starting a streamed run."""

    assistant_id: str | None = Field(
        default=None,
        description="Pipeline variant; the configured default when omitted",
        examples=["v0-generator-subgraphs"],
    )
    input: dict[str, Any] = Field(
        default_factory=dict,
        description="Run input: messages, prompt, approval decision or feedback",
        examples=[{"messages": [{"type": "human", "content": "A pricing card"}]}],
    )


class AssistantSearchRequest(BaseModel):
    graph_id: str | None = Field(default=None, description="Filter by graph id")


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    assistants: list[str] = Field(
        default_factory=list,
        description="Registered assistant ids",
    )
    active_runs: int = Field(
        default=0,
        description="Number of runs currently executing",
    )
