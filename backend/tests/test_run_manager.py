"""Tests for run_manager.py -- run scheduling, lifecycle events and thread status."""

import asyncio

import pytest

from agents.linear_graph import LINEAR_ASSISTANT_ID
from agents.supervisor_graph import SUPERVISOR_ASSISTANT_ID
from agents.templates import offline_reply
from agents.utils import MockLLMClient
from assistants import AssistantNotFoundError, AssistantRegistry
from events import EventBus, EventType, RunEvent
from run_manager import RunManager
from store import AssistantMismatchError, ThreadBusyError, ThreadStatus, ThreadStore
from tests.conftest import COMPONENT_HTML, REQUIREMENTS_JSON

BRIEF_INPUT = {"messages": [{"type": "human", "content": "Build a todo app with dark mode"}]}


def _manager(
    thread_store: ThreadStore,
    event_bus: EventBus,
    registry: AssistantRegistry,
    llm: MockLLMClient,
) -> RunManager:
    return RunManager(thread_store, event_bus, registry, llm)


async def _drain(queue: asyncio.Queue[RunEvent]) -> list[RunEvent]:
    """Read events until the run-closed sentinel (excluded)."""
    events: list[RunEvent] = []
    while True:
        event = await asyncio.wait_for(queue.get(), timeout=5.0)
        if event.type == EventType.RUN_CLOSED:
            return events
        events.append(event)


def _types(events: list[RunEvent]) -> list[str]:
    return [event.type.value for event in events]


@pytest.fixture()
def manager(
    thread_store: ThreadStore,
    event_bus: EventBus,
    registry: AssistantRegistry,
    mock_llm: MockLLMClient,
) -> RunManager:
    return _manager(thread_store, event_bus, registry, mock_llm)


class TestSupervisorRuns:
    async def test_first_run_waits_for_approval(self, manager: RunManager, thread_store: ThreadStore) -> None:
        thread_store.create("thread-1")
        run_id, queue = await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, BRIEF_INPUT)
        events = await _drain(queue)

        types = _types(events)
        assert types[0] == "run-started"
        assert types[-2:] == ["approval-required", "run-finished"]
        assert "error" not in types

        finished = events[-1].data
        assert finished["runId"] == run_id
        assert finished["outcome"] == "suspended"
        assert finished["summary"] == "Component ready for preview!"
        assert finished["completedStep"] == "preview"

        record = thread_store.get("thread-1")
        assert record.status == ThreadStatus.WAITING
        assert record.assistant_id == SUPERVISOR_ASSISTANT_ID
        assert record.values["component_state"].code == COMPONENT_HTML
        assert record.checkpoint is not None
        assert [e.checkpoint_id for e in thread_store.history("thread-1")] == [record.checkpoint]

    async def test_approval_run_completes(
        self, thread_store: ThreadStore, event_bus: EventBus, registry: AssistantRegistry
    ) -> None:
        llm = MockLLMClient(responses=[REQUIREMENTS_JSON, COMPONENT_HTML])
        manager = _manager(thread_store, event_bus, registry, llm)
        thread_store.create("thread-1")

        _, queue = await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, BRIEF_INPUT)
        await _drain(queue)
        _, queue = await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, {"userApproval": True})
        events = await _drain(queue)

        assert events[-1].data["outcome"] == "halted"
        assert events[-1].data["completedStep"] == "approved"
        assert "approval-required" not in _types(events)

        record = thread_store.get("thread-1")
        assert record.status == ThreadStatus.COMPLETED
        assert record.values["current_step"] == "approved"
        history = thread_store.history("thread-1")
        assert len(history) == 2
        assert history[1].parent_checkpoint_id == history[0].checkpoint_id
        assert len(llm.call_history) == 2

    async def test_early_approval_still_stops_at_preview(
        self, manager: RunManager, thread_store: ThreadStore
    ) -> None:
        thread_store.create("thread-1")
        _, queue = await manager.start_run(
            "thread-1", SUPERVISOR_ASSISTANT_ID, {**BRIEF_INPUT, "userApproval": True}
        )
        events = await _drain(queue)

        assert events[-1].data["outcome"] == "suspended"
        record = thread_store.get("thread-1")
        assert record.status == ThreadStatus.WAITING
        assert record.values["current_step"] == "preview"
        assert record.values["awaiting_approval"] is True

    async def test_unknown_thread_is_created_lazily(self, manager: RunManager, thread_store: ThreadStore) -> None:
        _, queue = await manager.start_run("fresh-thread", None, BRIEF_INPUT)
        await _drain(queue)
        assert thread_store.get("fresh-thread").assistant_id == SUPERVISOR_ASSISTANT_ID


class TestFailures:
    async def test_step_error_leaves_thread_idle(
        self, thread_store: ThreadStore, event_bus: EventBus, registry: AssistantRegistry
    ) -> None:
        llm = MockLLMClient(responses=[ConnectionError("network down")])
        manager = _manager(thread_store, event_bus, registry, llm)
        thread_store.create("thread-1")

        run_id, queue = await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, BRIEF_INPUT)
        events = await _drain(queue)
        await manager.wait_for_run(run_id)

        error = events[-1]
        assert error.type == EventType.ERROR
        assert error.data == {"runId": run_id, "message": "network down", "errorType": "ConnectionError"}

        failed = [e.data for e in events if e.type == EventType.STEP_STATUS and e.data["status"] == "error"]
        assert failed == [
            {"id": "requirements", "label": "Requirements Parser", "status": "error", "note": "network down"}
        ]
        assert "run-finished" not in _types(events)

        record = thread_store.get("thread-1")
        assert record.status == ThreadStatus.IDLE
        assert record.checkpoint is None
        assert record.values["current_step"] == "requirements"
        assert not thread_store.is_running("thread-1")

    async def test_closed_runs_release_event_history(
        self, thread_store: ThreadStore, event_bus: EventBus, registry: AssistantRegistry
    ) -> None:
        manager = _manager(thread_store, event_bus, registry, MockLLMClient(responder=offline_reply))
        run_ids = []
        for index in range(3):
            thread_store.create(f"thread-{index}")
            run_id, queue = await manager.start_run(f"thread-{index}", SUPERVISOR_ASSISTANT_ID, BRIEF_INPUT)
            await _drain(queue)
            await manager.wait_for_run(run_id)
            run_ids.append(run_id)

        for run_id in run_ids:
            assert event_bus.get_event_history(run_id) == []
            assert event_bus.get_subscriber_count(run_id) == 0

    async def test_missing_user_message_reports_error(self, manager: RunManager, thread_store: ThreadStore) -> None:
        thread_store.create("thread-1")
        _, queue = await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, {})
        events = await _drain(queue)
        assert events[-1].data["errorType"] == "MissingInputError"


class TestStartRunValidation:
    async def test_unknown_assistant(self, manager: RunManager) -> None:
        with pytest.raises(AssistantNotFoundError):
            await manager.start_run("thread-1", "nope", BRIEF_INPUT)

    async def test_assistant_mismatch(self, manager: RunManager, thread_store: ThreadStore) -> None:
        thread_store.create("thread-1", assistant_id=SUPERVISOR_ASSISTANT_ID)
        with pytest.raises(AssistantMismatchError):
            await manager.start_run("thread-1", LINEAR_ASSISTANT_ID, {"prompt": "CRM"})

    async def test_concurrent_run_is_refused(self, manager: RunManager, thread_store: ThreadStore) -> None:
        thread_store.create("thread-1")
        run_id, queue = await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, BRIEF_INPUT)
        with pytest.raises(ThreadBusyError):
            await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, BRIEF_INPUT)

        await manager.wait_for_run(run_id)
        await _drain(queue)
        assert manager.active_run_count == 0
        assert not thread_store.is_running("thread-1")


class TestLinearRuns:
    async def test_linear_run_streams_prd_and_waits(
        self, thread_store: ThreadStore, event_bus: EventBus, registry: AssistantRegistry
    ) -> None:
        manager = _manager(thread_store, event_bus, registry, MockLLMClient())
        thread_store.create("thread-2")

        _, queue = await manager.start_run("thread-2", LINEAR_ASSISTANT_ID, {"prompt": "Clinic CRM"})
        events = await _drain(queue)

        types = _types(events)
        assert "prd" in types
        assert "artifact" in types
        approval = next(e for e in events if e.type == EventType.APPROVAL_REQUIRED)
        assert approval.data["stepId"] == "spec"
        assert thread_store.get("thread-2").status == ThreadStatus.WAITING


async def test_shutdown_cancels_in_flight_runs(manager: RunManager, thread_store: ThreadStore) -> None:
    thread_store.create("thread-1")
    _, queue = await manager.start_run("thread-1", SUPERVISOR_ASSISTANT_ID, BRIEF_INPUT)

    await manager.shutdown()

    assert manager.active_run_count == 0
    assert not thread_store.is_running("thread-1")
    events = await _drain(queue)
    assert "run-finished" not in _types(events)
