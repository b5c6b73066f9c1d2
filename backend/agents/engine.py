"""One configurable state machine for every generation flow.

A :class:`Flow` describes a pipeline as data plus a router:

- a state shape whose reducers live on the ``TypedDict`` (see
  :mod:`agents.channels`)
- a table of named steps, each ``(state, context) -> partial update``
- a transition table describing the usual hand-offs (reported by
  ``graph_info``; routing itself may reach any step)
- ``route(state) -> NextAction``, a pure function of state

:class:`StateMachine` compiles a flow into a LangGraph ``StateGraph``. Every
step is a node; conditional edges out of ``START`` and out of every node
call ``flow.route``. ``RunStep`` continues to the named node, ``Halt`` and
``Suspend`` both end the graph. Since ``route`` is pure, the action that
ended a run is recomputed from the final state and returned to the caller,
so "waiting for a human" is an explicit result, never inferred.

Execution:
    run(state)      streams the compiled graph until Halt/Suspend
    advance(state)  one routing decision, one step, one merge (no LangGraph)
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

import structlog
from langgraph.graph import END, START, StateGraph

from agents.channels import ChannelTable
from agents.state import serialize_state
from agents.utils import LLMClient
from events.emitter import RunEmitter
from events.types import EventType
from models.generation import StepRunStatus, utc_now_iso

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Router results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunStep:
    """Run the named step next."""

    step: str


@dataclass(frozen=True)
class Halt:
    """The flow reached a terminal state (``approved`` or ``end``)."""

    reason: str = "end"


@dataclass(frozen=True)
class Suspend:
    """The flow is waiting for a human decision before it can continue."""

    reason: str = "approval"


NextAction = RunStep | Halt | Suspend


# ---------------------------------------------------------------------------
# Step plumbing
# ---------------------------------------------------------------------------


@dataclass
class StepContext:
    """Collaborators and settings handed to every step.

    Attributes:
        llm: LLM collaborator; steps that need a model call ``llm.complete``
        emitter: Run-scoped event emitter
        model: Model override for every LLM call (None = client default)
        requirements_temperature: Sampling temperature for requirements parsing
        code_temperature: Sampling temperature for code generation
        scaffold_temperature: Sampling temperature for the scaffold UI preview
    """

    llm: LLMClient
    emitter: RunEmitter = field(default_factory=RunEmitter)
    model: str | None = None
    requirements_temperature: float = 0.3
    code_temperature: float = 0.7
    scaffold_temperature: float = 0.4


StepFn = Callable[[Mapping[str, Any], StepContext], Awaitable[dict[str, Any]]]


@dataclass
class RunOutcome:
    """Result of running a flow until it stops.

    Attributes:
        action: The router decision that stopped the run (Halt or Suspend,
            or RunStep when ``advance`` stopped after one step)
        state: Final merged state
        steps_run: Step names in execution order
    """

    action: NextAction
    state: dict[str, Any]
    steps_run: list[str] = field(default_factory=list)

    @property
    def suspended(self) -> bool:
        return isinstance(self.action, Suspend)

    @property
    def halted(self) -> bool:
        return isinstance(self.action, Halt)


class Flow(ABC):
    """A pipeline variant: state shape, steps, transitions and router.

    Subclasses set the class attributes and implement the abstract methods.
    Flows hold no per-run state; one instance serves every thread.
    """

    assistant_id: ClassVar[str]
    name: ClassVar[str]
    description: ClassVar[str]
    state_schema: ClassVar[type]
    channels: ClassVar[ChannelTable]
    step_labels: ClassVar[dict[str, str]]
    transitions: ClassVar[dict[str, tuple[str, ...]]]
    metadata: ClassVar[dict[str, Any]] = {}

    @abstractmethod
    def initial_state(self, session_id: str | None = None) -> dict[str, Any]:
        """Fresh state for a new thread."""

    @abstractmethod
    def route(self, state: Mapping[str, Any]) -> NextAction:
        """Decide what happens next. Must be total and side-effect free."""

    @abstractmethod
    def steps(self) -> dict[str, StepFn]:
        """Step functions keyed by step name."""

    @abstractmethod
    async def apply_input(
        self,
        state: Mapping[str, Any],
        run_input: Mapping[str, Any],
        context: StepContext,
    ) -> dict[str, Any]:
        """Translate a run request body into a partial state update."""

    @abstractmethod
    def summarize(self, state: Mapping[str, Any]) -> str:
        """Human-readable summary for the ``run-finished`` event."""

    def completed_step(self, state: Mapping[str, Any]) -> str:
        return str(state.get("current_step", ""))

    def approval_request(self, state: Mapping[str, Any]) -> dict[str, Any] | None:
        """Payload of the ``approval-required`` event while suspended."""
        return None

    def serialize(self, state: Mapping[str, Any]) -> dict[str, Any]:
        return serialize_state(dict(state))

    async def on_step_start(self, step: str, state: Mapping[str, Any], context: StepContext) -> None:
        """Hook run before a step executes."""

    async def on_step_end(self, step: str, state: Mapping[str, Any], context: StepContext) -> None:
        """Hook run after a step's update is merged and committed."""

    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "title": f"{self.name}Input", "properties": {}}

    def output_schema(self) -> dict[str, Any]:
        return {"type": "object", "title": f"{self.name}Output", "properties": {}}

    def schemas(self) -> dict[str, Any]:
        return {
            "input_schema": self.input_schema(),
            "output_schema": self.output_schema(),
        }

    def graph_info(self) -> dict[str, Any]:
        """Nodes and edges of the transition table, for the client."""
        labels = {START: "Start", END: "End", **self.step_labels}
        node_ids = [START, *self.step_labels, END]
        edges = [
            {"source": source, "target": target}
            for source, targets in self.transitions.items()
            for target in targets
        ]
        return {
            "nodes": [{"id": node_id, "label": labels[node_id]} for node_id in node_ids],
            "edges": edges,
        }


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


NODE_SUFFIX = "_step"


def node_name(step: str) -> str:
    """Graph node id of a step (state keys and node ids must not collide)."""
    return step if step == END else f"{step}{NODE_SUFFIX}"


def step_name(node: str) -> str:
    return node.removesuffix(NODE_SUFFIX)


class StateMachine:
    """Executes a :class:`Flow` against one thread's state.

    Attributes:
        flow: The pipeline variant being executed
        context: Collaborators for this run
        recursion_limit: Maximum number of steps one ``run`` may execute
    """

    def __init__(self, flow: Flow, context: StepContext, recursion_limit: int = 50) -> None:
        self.flow = flow
        self.context = context
        self.recursion_limit = recursion_limit
        self._steps = flow.steps()
        self._compiled_graph = self._build_graph()

    def _build_graph(self):
        """Build and compile the LangGraph StateGraph for the flow."""
        graph = StateGraph(self.flow.state_schema)

        for name in self._steps:
            graph.add_node(node_name(name), self._make_node(name))

        path_map = self._path_map()
        graph.add_conditional_edges(START, self._route_edge, path_map)
        for name in self._steps:
            graph.add_conditional_edges(node_name(name), self._route_edge, path_map)

        return graph.compile()

    def _path_map(self) -> dict[str, str]:
        """Every step is reachable from every node; ``transitions`` only feeds ``graph_info``."""
        return {**{step: node_name(step) for step in self._steps}, END: END}

    def _route_edge(self, state: dict[str, Any]) -> str:
        action = self.flow.route(state)
        if isinstance(action, RunStep):
            return action.step
        return END

    def _make_node(self, name: str):
        async def node(state: dict[str, Any]) -> dict[str, Any]:
            return await self._execute(name, state)

        node.__name__ = f"{name}_node"
        return node

    async def _execute(self, name: str, state: Mapping[str, Any]) -> dict[str, Any]:
        """Run one step and return its validated partial update."""
        logger.info("step_started", step=name, current_step=state.get("current_step"))
        await self.flow.on_step_start(name, state, self.context)

        try:
            update = dict(await self._steps[name](state, self.context))
        except Exception as e:
            label = self.flow.step_labels.get(name, name)
            await emit_step_status(self.context, name, label, StepRunStatus.ERROR, note=str(e))
            raise
        update.setdefault("updated_at", utc_now_iso())
        self.flow.channels.validate_update(update)

        logger.info("step_finished", step=name, fields=sorted(update))
        return update

    async def _commit(self, name: str, state: dict[str, Any]) -> None:
        await self.context.emitter.emit_state(state)
        await self.flow.on_step_end(name, state, self.context)

    async def run(self, state: Mapping[str, Any]) -> RunOutcome:
        """Run steps until the router halts or suspends.

        State is committed through ``emitter.emit_state`` after every merged
        step, so a failing step leaves the last successful merge in place.
        Step exceptions propagate unchanged after the step is reported as ``error``.
        """
        current = dict(state)
        action = self.flow.route(current)
        if not isinstance(action, RunStep):
            logger.info("flow_not_runnable", action=repr(action))
            return RunOutcome(action=action, state=current)

        steps_run: list[str] = []
        pending_step: str | None = None
        config = {"recursion_limit": self.recursion_limit}

        async for mode, chunk in self._compiled_graph.astream(
            current, config, stream_mode=["updates", "values"]
        ):
            if mode == "updates":
                node = next(iter(chunk), None)
                pending_step = step_name(node) if node else None
            elif mode == "values" and pending_step is not None:
                current = dict(chunk)
                steps_run.append(pending_step)
                await self._commit(pending_step, current)
                pending_step = None

        action = self.flow.route(current)
        logger.info("flow_stopped", action=repr(action), steps_run=steps_run)
        return RunOutcome(action=action, state=current, steps_run=steps_run)

    async def advance(self, state: Mapping[str, Any]) -> RunOutcome:
        """Perform a single tick: route once, run at most one step, merge."""
        current = dict(state)
        action = self.flow.route(current)
        if not isinstance(action, RunStep):
            return RunOutcome(action=action, state=current)

        update = await self._execute(action.step, current)
        merged = self.flow.channels.merge(current, update)
        await self._commit(action.step, merged)
        return RunOutcome(action=self.flow.route(merged), state=merged, steps_run=[action.step])


async def emit_step_status(
    context: StepContext,
    step_id: str,
    label: str,
    status: str,
    note: str | None = None,
) -> None:
    """Emit a ``step-status`` event."""
    payload: dict[str, Any] = {"id": step_id, "label": label, "status": status}
    if note is not None:
        payload["note"] = note
    await context.emitter.emit(EventType.STEP_STATUS, payload)
