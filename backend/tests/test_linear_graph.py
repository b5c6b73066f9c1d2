"""Tests for the linear scaffold flow (agents/linear_graph.py, agents/steps/scaffold.py)."""

from typing import Any

import pytest

from agents.engine import Halt, RunStep, StateMachine, StepContext, Suspend
from agents.linear_graph import (
    DEFAULT_REJECTION_FEEDBACK,
    LinearFlow,
    parse_approval_decision,
    resolve_prompt,
    route_linear,
)
from agents.steps.scaffold import PRD_PATH, build_preview_markup, progress_for, step_entry
from agents.utils import MockLLMClient
from events import EventBus, EventType, RunEmitter
from models.generation import Message, StepRunStatus
from tests.conftest import TEST_RUN_ID, events_of, make_context, payloads, user_message

PREVIEW_HTML = "<section class='p-4'>CRM preview</section>"


@pytest.fixture()
def flow() -> LinearFlow:
    return LinearFlow()


def _context(llm: MockLLMClient, event_bus: EventBus, flow: LinearFlow) -> StepContext:
    emitter = RunEmitter(event_bus, thread_id="thread-1", run_id=TEST_RUN_ID, serialize=flow.serialize)
    return StepContext(llm=llm, emitter=emitter)


def _with_steps(flow: LinearFlow, **statuses: StepRunStatus) -> dict[str, Any]:
    state = flow.initial_state("thread-1")
    for step_id, status in statuses.items():
        state["steps"] = {**state["steps"], **step_entry(step_id, status)}
    return state


async def _input(flow: LinearFlow, state: dict[str, Any], run_input: dict[str, Any], context: StepContext) -> dict[str, Any]:
    update = await flow.apply_input(state, run_input, context)
    return flow.channels.merge(state, update)


# =========================================================================
# Routing
# =========================================================================


class TestRouteLinear:
    def test_fresh_state_starts_with_spec(self, flow: LinearFlow) -> None:
        assert route_linear(flow.initial_state()) == RunStep("spec")

    def test_open_gate_suspends(self, flow: LinearFlow) -> None:
        state = {**flow.initial_state(), "awaiting_approval": True, "pending_approval_step": "spec"}
        assert route_linear(state) == Suspend("approval")

    def test_first_unfinished_step_runs(self, flow: LinearFlow) -> None:
        state = _with_steps(flow, spec=StepRunStatus.SUCCESS, schema=StepRunStatus.SUCCESS)
        assert route_linear(state) == RunStep("ui")

    def test_fix_is_skipped_when_build_succeeded(self, flow: LinearFlow) -> None:
        done = {s: StepRunStatus.SUCCESS for s in ("spec", "schema", "ui", "apis", "build")}
        assert route_linear(_with_steps(flow, **done)) == RunStep("done")

    def test_all_done_halts(self, flow: LinearFlow) -> None:
        done = {s: StepRunStatus.SUCCESS for s in ("spec", "schema", "ui", "apis", "build", "done")}
        assert route_linear(_with_steps(flow, **done)) == Halt("end")

    def test_rejected_step_is_reentered(self, flow: LinearFlow) -> None:
        assert route_linear(_with_steps(flow, spec=StepRunStatus.ERROR)) == RunStep("spec")


class TestInputParsing:
    def test_parse_approval_decision(self) -> None:
        decision = parse_approval_decision(
            {"approval": {"step": "spec", "status": "rejected", "feedback": "  add billing "}}
        )
        assert decision is not None
        assert decision.status == "rejected"
        assert decision.feedback == "add billing"

    @pytest.mark.parametrize(
        "run_input",
        [
            {},
            {"approval": "yes"},
            {"approval": {"step": "deploy", "status": "approved"}},
            {"approval": {"step": "spec", "status": "maybe"}},
        ],
    )
    def test_malformed_decisions_are_ignored(self, run_input: dict[str, Any]) -> None:
        assert parse_approval_decision(run_input) is None

    def test_prompt_prefers_latest_user_message(self) -> None:
        messages = [user_message("old brief"), user_message("Clinic CRM")]
        assert resolve_prompt({"prompt": "ignored"}, messages, {}) == "Clinic CRM"

    def test_prompt_falls_back_to_request_then_state_then_prd(self) -> None:
        assert resolve_prompt({"prompt": "Task tracker"}, [], {}) == "Task tracker"
        assert resolve_prompt({}, [], {"prompt": "Kept"}) == "Kept"
        assert resolve_prompt({}, [], {"prompt": "", "prd": "# Clinic Crm\n..."}) == "Clinic Crm"

    def test_prompt_default_is_timestamped(self) -> None:
        assert resolve_prompt({}, [], {}).startswith("Generate a dashboard for: ")


# =========================================================================
# Runs
# =========================================================================


class TestLinearRun:
    async def test_first_run_stops_at_prd_approval(self, flow: LinearFlow, event_bus: EventBus) -> None:
        context = _context(MockLLMClient(), event_bus, flow)
        state = await _input(flow, flow.initial_state("thread-1"), {"prompt": "Clinic CRM for patients"}, context)

        outcome = await StateMachine(flow, context).run(state)

        assert outcome.action == Suspend("approval")
        assert outcome.steps_run == ["spec"]
        assert outcome.state["pending_approval_step"] == "spec"
        assert outcome.state["steps"]["spec"].status == StepRunStatus.WAITING
        assert outcome.state["prd"].startswith("# Clinic CRM For Patients")
        assert [a.path for a in outcome.state["artifacts"]] == [PRD_PATH]
        assert events_of(event_bus, EventType.PRD)[0].data["prd"] == outcome.state["prd"]

    async def test_approval_runs_remaining_steps(self, flow: LinearFlow, event_bus: EventBus) -> None:
        llm = MockLLMClient(responses=[f"```html\n{PREVIEW_HTML}\n```"])
        context = _context(llm, event_bus, flow)
        state = await _input(flow, flow.initial_state("thread-1"), {"prompt": "Clinic CRM"}, context)
        state = (await StateMachine(flow, context).run(state)).state

        state = await _input(flow, state, {"approval": {"step": "spec", "status": "approved"}}, context)
        assert state["approved"] is True
        assert state["awaiting_approval"] is False
        outcome = await StateMachine(flow, context).run(state)

        assert outcome.action == Halt("end")
        assert outcome.steps_run == ["schema", "ui", "apis", "build", "done"]
        assert outcome.state["steps"]["fix"].status == StepRunStatus.QUEUED
        assert outcome.state["progress"] == 100
        assert outcome.state["component_code"] == PREVIEW_HTML
        paths = [a.path for a in outcome.state["artifacts"]]
        assert paths == [PRD_PATH, "schema.prisma", "app/components/Preview.tsx", "app/api/routes.md"]
        assert flow.summarize(outcome.state) == "Generated scaffold for: Clinic CRM"

    async def test_edited_state_can_skip_past_a_step(self, flow: LinearFlow, event_bus: EventBus) -> None:
        llm = MockLLMClient()
        context = _context(llm, event_bus, flow)
        state = await _input(flow, flow.initial_state("thread-1"), {"prompt": "Clinic CRM"}, context)
        state = (await StateMachine(flow, context).run(state)).state
        state = await _input(flow, state, {"approval": {"step": "spec", "status": "approved"}}, context)
        state = flow.channels.merge(state, {"steps": step_entry("ui", StepRunStatus.SUCCESS)})

        outcome = await StateMachine(flow, context).run(state)

        assert outcome.action == Halt("end")
        assert outcome.steps_run == ["schema", "apis", "build", "done"]
        assert llm.call_history == []

    async def test_rejection_regenerates_prd_with_feedback(self, flow: LinearFlow, event_bus: EventBus) -> None:
        context = _context(MockLLMClient(), event_bus, flow)
        state = await _input(flow, flow.initial_state("thread-1"), {"prompt": "Clinic CRM"}, context)
        state = (await StateMachine(flow, context).run(state)).state

        state = await _input(
            flow,
            state,
            {"approval": {"step": "spec", "status": "rejected", "feedback": "Add billing"}},
            context,
        )
        assert state["steps"]["spec"].status == StepRunStatus.ERROR
        assert state["feedback"] == "Add billing"

        outcome = await StateMachine(flow, context).run(state)

        assert outcome.suspended
        assert outcome.steps_run == ["spec"]
        assert "## Revision Notes\n- Add billing" in outcome.state["prd"]
        assert payloads(events_of(event_bus, EventType.APPROVAL_REJECTED)) == [
            {"stepId": "spec", "feedback": "Add billing"}
        ]

    async def test_rejection_without_feedback_uses_default(self, flow: LinearFlow) -> None:
        context = StepContext(llm=MockLLMClient())
        state = {
            **flow.initial_state("thread-1"),
            "awaiting_approval": True,
            "pending_approval_step": "spec",
        }
        update = await flow.apply_input(state, {"approval": {"step": "spec", "status": "rejected"}}, context)
        assert update["feedback"] == DEFAULT_REJECTION_FEEDBACK

    async def test_decision_for_other_step_keeps_gate_open(self, flow: LinearFlow) -> None:
        context = StepContext(llm=MockLLMClient())
        state = {
            **flow.initial_state("thread-1"),
            "awaiting_approval": True,
            "pending_approval_step": "spec",
        }
        update = await flow.apply_input(state, {"approval": {"step": "ui", "status": "approved"}}, context)
        merged = flow.channels.merge(state, update)
        assert route_linear(merged) == Suspend("approval")

    async def test_approval_request_while_waiting(self, flow: LinearFlow, event_bus: EventBus) -> None:
        context = _context(MockLLMClient(), event_bus, flow)
        state = await _input(flow, flow.initial_state("thread-1"), {"prompt": "Clinic CRM"}, context)
        state = (await StateMachine(flow, context).run(state)).state

        payload = flow.approval_request(state)
        assert payload["stepId"] == "spec"
        assert payload["label"] == "PRD & Decisions"
        assert payload["artifactPath"] == PRD_PATH
        assert payload["excerpt"].startswith("# Clinic CRM")
        assert flow.summarize(state) == "Awaiting approval for PRD & Decisions"
        assert flow.completed_step(state) == "spec"


# =========================================================================
# Scaffold step helpers
# =========================================================================


class TestScaffoldHelpers:
    def test_progress_for(self) -> None:
        assert progress_for("spec") == 14
        assert progress_for("done") == 100

    async def test_preview_falls_back_when_llm_fails(self) -> None:
        llm = MockLLMClient(responses=[RuntimeError("no key")])
        markup = await build_preview_markup("Clinic CRM", None, make_context(llm))
        assert "Clinic CRM" in markup
        assert markup.startswith("<div")

    async def test_preview_strips_document_tags(self) -> None:
        llm = MockLLMClient(responses=["<html><body><main>Hi</main></body></html>"])
        markup = await build_preview_markup("x", None, make_context(llm))
        assert markup == "<main>Hi</main>"

    async def test_preview_prompt_carries_feedback(self) -> None:
        llm = MockLLMClient(responses=[PREVIEW_HTML])
        await build_preview_markup("CRM", "more contrast", make_context(llm))
        call = llm.call_history[0]
        assert "more contrast" in call["messages"][1]["content"]
        assert call["temperature"] == 0.4

    def test_messages_are_normalized_into_state(self) -> None:
        msg = Message.from_payload({"role": "user", "content": "Clinic CRM"})
        assert resolve_prompt({}, [msg], {}) == "Clinic CRM"
