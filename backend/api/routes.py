"""HTTP API routes for the generator backend.

This module defines the assistant, thread and run endpoints consumed by the
frontend. Runs are streamed back as Server-Sent Events (see stream.py).
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING, Annotated, Any

import structlog
from fastapi import APIRouter, Body, HTTPException, Path, status
from fastapi.responses import StreamingResponse
from pydantic import ValidationError

from agents.errors import UnknownFieldError
from agents.state import deserialize_update
from api.stream import sse_response
from assistants.registry import AssistantNotFoundError
from models.schemas import (
    AssistantSearchRequest,
    CheckpointRef,
    HealthResponse,
    HistoryEntryResponse,
    HistoryRequest,
    RunStreamRequest,
    StateUpdateRequest,
    StateUpdateResponse,
    ThreadCreate,
    ThreadResponse,
    ThreadStateResponse,
)
from store.thread_store import (
    AssistantMismatchError,
    ThreadBusyError,
    ThreadNotFoundError,
    ThreadRecord,
)

if TYPE_CHECKING:
    from agents.engine import Flow
    from run_manager import RunManager

logger = structlog.get_logger(__name__)

router = APIRouter()

ThreadId = Annotated[str, Path(description="The thread ID")]
AssistantId = Annotated[str, Path(description="The assistant (graph) ID")]

# Run manager dependency (set during application startup)
_run_manager: RunManager | None = None


def set_run_manager(manager: RunManager) -> None:
    """Set the run manager instance for the routes.

    This should be called during application startup to inject the run
    manager dependency.

    Args:
        manager: The RunManager instance to use for all routes.
    """
    global _run_manager
    _run_manager = manager
    logger.info("run_manager_configured")


def get_run_manager() -> RunManager:
    """Get the run manager instance.

    Raises:
        RuntimeError: If the run manager has not been configured.
    """
    if _run_manager is None:
        logger.error("run_manager_not_configured")
        raise RuntimeError("RunManager not configured. Call set_run_manager() during startup.")
    return _run_manager


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _get_flow(assistant_id: str) -> Flow:
    try:
        return get_run_manager().registry.get(assistant_id)
    except AssistantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None


def _get_thread(thread_id: str) -> ThreadRecord:
    try:
        return get_run_manager().thread_store.get(thread_id)
    except ThreadNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None


def _serialize_values(record: ThreadRecord, values: dict[str, Any]) -> dict[str, Any]:
    """Wire form of thread values; unbound threads have none."""
    if record.assistant_id is None:
        return {}
    return _get_flow(record.assistant_id).serialize(values)


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check() -> HealthResponse:
    manager = get_run_manager()
    return HealthResponse(
        status="healthy",
        timestamp=time.time(),
        assistants=[item["assistant_id"] for item in manager.registry.search()],
        active_runs=manager.active_run_count,
    )


# -----------------------------------------------------------------------------
# Assistants
# -----------------------------------------------------------------------------


@router.post(
    "/assistants/search",
    summary="Search assistants",
    description="List registered assistants, optionally filtered by graph id.",
)
async def search_assistants(
    request: Annotated[AssistantSearchRequest | None, Body()] = None,
) -> list[dict[str, Any]]:
    graph_id = request.graph_id if request else None
    return get_run_manager().registry.search(graph_id=graph_id)


@router.get("/assistants/{assistant_id}", summary="Get an assistant")
async def get_assistant(assistant_id: AssistantId) -> dict[str, Any]:
    flow = _get_flow(assistant_id)
    return {**get_run_manager().registry.summary(flow), "graph": flow.graph_info()}


@router.get("/assistants/{assistant_id}/graph", summary="Get an assistant's graph")
async def get_assistant_graph(assistant_id: AssistantId) -> dict[str, Any]:
    return _get_flow(assistant_id).graph_info()


@router.get("/assistants/{assistant_id}/schemas", summary="Get an assistant's schemas")
async def get_assistant_schemas(assistant_id: AssistantId) -> dict[str, Any]:
    return _get_flow(assistant_id).schemas()


# -----------------------------------------------------------------------------
# Threads
# -----------------------------------------------------------------------------


@router.post(
    "/threads",
    response_model=ThreadResponse,
    summary="Create a thread",
    description="Create a thread, or return the existing one if the id is taken.",
)
async def create_thread(
    request: Annotated[ThreadCreate | None, Body()] = None,
) -> ThreadResponse:
    request = request or ThreadCreate()
    manager = get_run_manager()
    flow = _get_flow(request.assistant_id) if request.assistant_id else None

    record = manager.thread_store.create(request.thread_id, request.metadata)
    if flow is not None:
        try:
            record = manager.thread_store.bind(record.thread_id, flow)
        except AssistantMismatchError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None

    logger.info("thread_requested", thread_id=record.thread_id, assistant_id=record.assistant_id)
    return ThreadResponse.from_record(record)


@router.get("/threads/{thread_id}", response_model=ThreadResponse, summary="Get a thread")
async def get_thread(thread_id: ThreadId) -> ThreadResponse:
    return ThreadResponse.from_record(_get_thread(thread_id))


@router.get(
    "/threads/{thread_id}/state",
    response_model=ThreadStateResponse,
    summary="Get a thread's current state",
)
async def get_thread_state(thread_id: ThreadId) -> ThreadStateResponse:
    record = _get_thread(thread_id)
    return ThreadStateResponse(
        thread_id=record.thread_id,
        values=_serialize_values(record, record.values),
        metadata=record.metadata,
        checkpoint=CheckpointRef(checkpoint_id=record.checkpoint) if record.checkpoint else None,
    )


@router.post(
    "/threads/{thread_id}/state",
    response_model=StateUpdateResponse,
    summary="Update a thread's state",
    description=(
        "Merge a partial state into the thread through its channel reducers "
        "and record a checkpoint."
    ),
)
async def update_thread_state(
    thread_id: ThreadId,
    request: StateUpdateRequest,
) -> StateUpdateResponse:
    manager = get_run_manager()
    record = _get_thread(thread_id)

    if record.assistant_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Thread {thread_id} is not bound to an assistant yet",
        )
    if manager.thread_store.is_running(thread_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Thread {thread_id} already has an active run",
        )

    flow = _get_flow(record.assistant_id)
    try:
        partial = deserialize_update(flow.state_schema, request.values)
    except UnknownFieldError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from None
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from None

    manager.thread_store.update(thread_id, partial, flow.channels)
    if request.as_node:
        writes = {**record.metadata.get("writes", {}), request.as_node: request.values}
        manager.thread_store.update_metadata(thread_id, {"writes": writes, "next": [request.as_node]})

    checkpoint_id = str(uuid.uuid4())
    manager.thread_store.set_checkpoint(thread_id, checkpoint_id)
    manager.thread_store.record_history(thread_id, checkpoint_id)

    logger.info(
        "thread_state_updated",
        thread_id=thread_id,
        fields=sorted(partial),
        as_node=request.as_node,
        checkpoint_id=checkpoint_id,
    )
    return StateUpdateResponse(checkpoint=CheckpointRef(checkpoint_id=checkpoint_id))


@router.post(
    "/threads/{thread_id}/history",
    response_model=list[HistoryEntryResponse],
    summary="Get a thread's checkpoint history",
)
async def get_thread_history(
    thread_id: ThreadId,
    request: Annotated[HistoryRequest | None, Body()] = None,
) -> list[HistoryEntryResponse]:
    record = _get_thread(thread_id)
    entries = get_run_manager().thread_store.history(thread_id)
    if request and request.limit:
        entries = entries[-request.limit :]
    return [
        HistoryEntryResponse.from_entry(entry, _serialize_values(record, entry.values))
        for entry in entries
    ]


# -----------------------------------------------------------------------------
# Runs
# -----------------------------------------------------------------------------


@router.post(
    "/threads/{thread_id}/runs/stream",
    summary="Start a run and stream its events",
    description=(
        "Execute the thread's assistant until it halts or waits for approval, "
        "streaming events as text/event-stream. The thread is created if needed."
    ),
    response_class=StreamingResponse,
)
async def stream_run(
    thread_id: ThreadId,
    request: Annotated[RunStreamRequest | None, Body()] = None,
) -> StreamingResponse:
    request = request or RunStreamRequest()
    manager = get_run_manager()

    try:
        run_id, queue = await manager.start_run(thread_id, request.assistant_id, request.input)
    except AssistantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from None
    except (AssistantMismatchError, ThreadBusyError) as e:
        logger.warning("run_rejected", thread_id=thread_id, reason=str(e))
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None

    return sse_response(manager.event_bus, run_id, queue)
