"""Run manager: turns one HTTP run request into one tick of a flow.

The RunManager coordinates between:
- ThreadStore: authoritative per-thread state, status and history
- AssistantRegistry: which flow a run executes
- EventBus: events streamed back to the client
- StateMachine: the flow execution itself

Usage:
    >>> manager = RunManager(thread_store, event_bus, registry, llm_client)
    >>> run_id, queue = await manager.start_run("thread-1", None, {"messages": [...]})
    >>> # the HTTP layer drains ``queue`` until the run-closed sentinel

Failure semantics: a step error is logged, reported as an ``error`` event and
leaves the thread ``idle`` with its last committed state. Nothing is retried
and no checkpoint is recorded for the failed run.
"""

import asyncio
import uuid
from collections.abc import Mapping
from typing import Any

import structlog

from agents.engine import Flow, RunOutcome, StateMachine, StepContext
from agents.utils import LLMClient
from assistants.registry import AssistantRegistry
from events import EventBus, EventType, RunEmitter, RunEvent
from store.thread_store import AssistantMismatchError, ThreadStatus, ThreadStore

logger = structlog.get_logger(__name__)


class RunManager:
    """Schedules runs as background tasks and reports their lifecycle.

    Attributes:
        thread_store: Store holding every thread's state
        event_bus: Bus the run's events are published on
        registry: Registered flows
        llm_client: LLM collaborator shared by all runs
    """

    def __init__(
        self,
        thread_store: ThreadStore,
        event_bus: EventBus,
        registry: AssistantRegistry,
        llm_client: LLMClient,
        *,
        default_assistant_id: str | None = None,
        model: str | None = None,
        requirements_temperature: float = 0.3,
        code_temperature: float = 0.7,
        scaffold_temperature: float = 0.4,
        recursion_limit: int = 50,
    ) -> None:
        self.thread_store = thread_store
        self.event_bus = event_bus
        self.registry = registry
        self.llm_client = llm_client
        self.default_assistant_id = default_assistant_id
        self.model = model
        self.requirements_temperature = requirements_temperature
        self.code_temperature = code_temperature
        self.scaffold_temperature = scaffold_temperature
        self.recursion_limit = recursion_limit
        self._tasks: dict[str, asyncio.Task[None]] = {}
        logger.info("run_manager_initialized")

    def _generate_run_id(self) -> str:
        return f"run-{uuid.uuid4().hex[:12]}"

    def resolve_flow(self, assistant_id: str | None) -> Flow:
        """Flow for ``assistant_id``, or the configured default.

        Raises:
            AssistantNotFoundError: If the id is not registered.
        """
        resolved = assistant_id or self.default_assistant_id or self.registry.default_id()
        return self.registry.get(resolved or "")

    def flow_for_thread(self, thread_id: str) -> Flow | None:
        """The flow a thread is bound to, if any."""
        record = self.thread_store.get(thread_id)
        if record.assistant_id is None:
            return None
        return self.registry.get(record.assistant_id)

    async def start_run(
        self,
        thread_id: str,
        assistant_id: str | None,
        run_input: Mapping[str, Any],
    ) -> tuple[str, asyncio.Queue[RunEvent]]:
        """Validate and schedule a run.

        The caller's queue is subscribed before the task is created. The
        thread's run slot is claimed here and released when the task ends.

        Returns:
            The run id and the queue receiving its events.

        Raises:
            AssistantNotFoundError: Unknown assistant.
            AssistantMismatchError: Thread bound to another assistant.
            ThreadBusyError: Thread already has an active run.
        """
        flow = self.resolve_flow(assistant_id)
        record = self.thread_store.get_or_create(thread_id)
        if record.assistant_id is not None and record.assistant_id != flow.assistant_id:
            raise AssistantMismatchError(
                f"Thread {thread_id} is bound to assistant {record.assistant_id}"
            )

        self.thread_store.claim_run(thread_id)

        run_id = self._generate_run_id()
        queue = self.event_bus.subscribe(run_id)

        task = asyncio.create_task(
            self.execute_run(thread_id, flow, run_id, run_input),
            name=f"run_{run_id}",
        )
        self._tasks[run_id] = task
        task.add_done_callback(lambda t, rid=run_id: self._finish_task(thread_id, rid))

        logger.info(
            "run_scheduled",
            thread_id=thread_id,
            run_id=run_id,
            assistant_id=flow.assistant_id,
        )
        return run_id, queue

    def _finish_task(self, thread_id: str, run_id: str) -> None:
        self._tasks.pop(run_id, None)
        self.thread_store.release_run(thread_id)

    def _build_context(self, emitter: RunEmitter) -> StepContext:
        return StepContext(
            llm=self.llm_client,
            emitter=emitter,
            model=self.model,
            requirements_temperature=self.requirements_temperature,
            code_temperature=self.code_temperature,
            scaffold_temperature=self.scaffold_temperature,
        )

    async def execute_run(
        self,
        thread_id: str,
        flow: Flow,
        run_id: str,
        run_input: Mapping[str, Any],
    ) -> RunOutcome | None:
        """Execute one run to suspension, halt or failure.

        Returns:
            The outcome, or None if the run failed.
        """
        log = logger.bind(thread_id=thread_id, run_id=run_id, assistant_id=flow.assistant_id)
        emitter = RunEmitter(
            self.event_bus,
            thread_id=thread_id,
            run_id=run_id,
            commit=lambda state: self.thread_store.replace_values(thread_id, state),
            serialize=flow.serialize,
        )
        context = self._build_context(emitter)

        try:
            await emitter.emit(EventType.RUN_STARTED, {"runId": run_id, "threadId": thread_id})
            record = self.thread_store.bind(thread_id, flow)
            self.thread_store.set_status(thread_id, ThreadStatus.RUNNING)

            update = await flow.apply_input(record.values, run_input, context)
            state = flow.channels.merge(record.values, update)
            await emitter.emit_state(state)
            log.info("run_started", current_step=state.get("current_step"))

            machine = StateMachine(flow, context, recursion_limit=self.recursion_limit)
            outcome = await machine.run(state)

            if outcome.suspended:
                self.thread_store.set_status(thread_id, ThreadStatus.WAITING)
                approval = flow.approval_request(outcome.state)
                if approval is not None:
                    await emitter.emit(EventType.APPROVAL_REQUIRED, approval)
            else:
                self.thread_store.set_status(thread_id, ThreadStatus.COMPLETED)

            checkpoint_id = str(uuid.uuid4())
            self.thread_store.set_checkpoint(thread_id, checkpoint_id)
            self.thread_store.record_history(thread_id, checkpoint_id)

            await emitter.emit(
                EventType.RUN_FINISHED,
                {
                    "runId": run_id,
                    "summary": flow.summarize(outcome.state),
                    "completedStep": flow.completed_step(outcome.state),
                    "outcome": "suspended" if outcome.suspended else "halted",
                },
            )
            log.info(
                "run_finished",
                steps_run=outcome.steps_run,
                action=repr(outcome.action),
                events_emitted=emitter.events_emitted,
            )
            return outcome

        except Exception as e:
            log.error("run_failed", error_type=type(e).__name__, error=str(e))
            self.thread_store.set_status(thread_id, ThreadStatus.IDLE)
            await emitter.emit(
                EventType.ERROR,
                {"runId": run_id, "message": str(e), "errorType": type(e).__name__},
            )
            return None

        finally:
            await self.event_bus.close_run(run_id, thread_id)

    @property
    def active_run_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    def get_task(self, run_id: str) -> asyncio.Task[None] | None:
        return self._tasks.get(run_id)

    async def wait_for_run(self, run_id: str) -> None:
        """Wait until a scheduled run finishes (no-op if already done)."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self) -> None:
        """Cancel every in-flight run. Called on application shutdown."""
        tasks = list(self._tasks.items())
        self._tasks.clear()
        for run_id, task in tasks:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info("run_cancelled", run_id=run_id)
            await self.event_bus.close_run(run_id)
        logger.info("run_manager_shutdown", cancelled=len(tasks))
