"""Supervisor flow: four generation steps coordinated by one router.

Routing table (``route_supervisor``):

    current_step   condition                        next
    ------------   -------------------------------  -----------------------
    requirements   -                                RunStep(requirements)
    design         -                                RunStep(design)
    code           -                                RunStep(code)
    preview        approval or feedback pending     RunStep(preview)
    preview        awaiting_approval                Suspend("approval")
    preview        otherwise                        RunStep(preview)
    approved       -                                Halt("approved")
    rejected       -                                RunStep(requirements)
    (unknown)      -                                RunStep(requirements)

A pending decision at ``preview`` is consumed by the preview step itself:
approval moves the thread to ``approved`` (which then halts), feedback
moves it back to ``requirements`` with ``iteration_count`` advanced.
"""

from collections.abc import Mapping
from typing import Any

import structlog
from langgraph.graph import END, START

from agents.engine import Flow, Halt, NextAction, RunStep, StepContext, StepFn, Suspend, emit_step_status
from agents.errors import UnknownStepError
from agents.state import (
    SUPERVISOR_CHANNELS,
    SupervisorState,
    SupervisorStep,
    create_supervisor_state,
    serialize_state,
)
from agents.steps import design_component, generate_code, parse_requirements, preview_iteration
from agents.steps.code_generator import COMPONENT_ARTIFACT_PATH
from events.types import EventType
from models.generation import Message, utc_now_iso

logger = structlog.get_logger(__name__)

SUPERVISOR_ASSISTANT_ID = "v0-generator-subgraphs"

STEP_PROGRESS: dict[str, int] = {
    SupervisorStep.REQUIREMENTS: 25,
    SupervisorStep.DESIGN: 50,
    SupervisorStep.CODE: 75,
    SupervisorStep.PREVIEW: 100,
}


def parse_step(value: Any) -> SupervisorStep:
    """Coerce a raw ``current_step`` value.

    Raises:
        UnknownStepError: If the value is not a supervisor step.
    """
    try:
        return SupervisorStep(value)
    except (ValueError, TypeError) as e:
        raise UnknownStepError(value) from e


def route_supervisor(state: Mapping[str, Any]) -> NextAction:
    """Decide the next action for a supervisor state. Never raises."""
    try:
        step = parse_step(state.get("current_step"))
    except UnknownStepError as e:
        logger.warning("unknown_step_routed_to_requirements", current_step=repr(e.step))
        return RunStep(SupervisorStep.REQUIREMENTS.value)

    if step is SupervisorStep.APPROVED:
        return Halt("approved")
    if step is SupervisorStep.REJECTED:
        return RunStep(SupervisorStep.REQUIREMENTS.value)
    if step is SupervisorStep.PREVIEW:
        if state.get("user_approval") or (state.get("feedback") or "").strip():
            return RunStep(SupervisorStep.PREVIEW.value)
        if state.get("awaiting_approval"):
            return Suspend("approval")
    return RunStep(step.value)


def summarize_supervisor(state: Mapping[str, Any]) -> str:
    step = state.get("current_step")
    if step == SupervisorStep.REQUIREMENTS:
        requirements = state.get("requirements")
        if requirements is not None and requirements.clarification_needed:
            return "I need clarification on your requirements."
        return "Requirements analyzed. Designing component..."
    if step == SupervisorStep.DESIGN:
        return "Component structure designed. Generating code..."
    if step == SupervisorStep.CODE:
        return "Code generated. Preparing preview..."
    if step == SupervisorStep.PREVIEW:
        return "Component ready for preview!"
    if step == SupervisorStep.APPROVED:
        return "Component approved! Ready to export."
    return f"Processing: {step}"


class SupervisorFlow(Flow):
    """Requirements parser, component designer, code generator, preview."""

    assistant_id = SUPERVISOR_ASSISTANT_ID
    name = "V0 Generator (Subgraph Architecture)"
    description = "Multi-agent system with 4 specialized subgraphs for component generation"
    metadata = {"tags": ["ui", "preview", "ag-ui", "subgraphs", "langgraph"], "version": "2.0.0"}
    state_schema = SupervisorState
    channels = SUPERVISOR_CHANNELS
    step_labels = {
        SupervisorStep.REQUIREMENTS.value: "Requirements Parser",
        SupervisorStep.DESIGN.value: "Component Designer",
        SupervisorStep.CODE.value: "Code Generator",
        SupervisorStep.PREVIEW.value: "Preview & Iteration",
    }
    transitions = {
        START: ("requirements", "design", "code", "preview", END),
        "requirements": ("design",),
        "design": ("code",),
        "code": ("preview",),
        "preview": ("requirements", END),
    }

    def initial_state(self, session_id: str | None = None) -> dict[str, Any]:
        return dict(create_supervisor_state(session_id))

    def route(self, state: Mapping[str, Any]) -> NextAction:
        return route_supervisor(state)

    def steps(self) -> dict[str, StepFn]:
        return {
            SupervisorStep.REQUIREMENTS.value: parse_requirements,
            SupervisorStep.DESIGN.value: design_component,
            SupervisorStep.CODE.value: generate_code,
            SupervisorStep.PREVIEW.value: preview_iteration,
        }

    async def apply_input(
        self,
        state: Mapping[str, Any],
        run_input: Mapping[str, Any],
        context: StepContext,
    ) -> dict[str, Any]:
        """Fold a run request into state.

        ``userApproval`` and ``feedback`` are always written explicitly, so a
        request without them clears any stale decision. They are only honoured
        while the preview is waiting for a human; otherwise they are dropped.
        """
        messages = [Message.from_payload(m) for m in run_input.get("messages") or []]
        approval = bool(run_input.get("userApproval", run_input.get("user_approval", False)))
        feedback = run_input.get("feedback")
        feedback = feedback.strip() or None if isinstance(feedback, str) else None
        if (approval or feedback) and not state.get("awaiting_approval"):
            logger.info(
                "decision_ignored_not_waiting",
                session_id=state.get("session_id"),
                current_step=state.get("current_step"),
            )
            approval, feedback = False, None

        update: dict[str, Any] = {
            "messages": messages,
            "user_approval": approval,
            "feedback": feedback,
            "updated_at": utc_now_iso(),
        }
        if approval or feedback:
            update["awaiting_approval"] = False
        logger.info(
            "supervisor_input_applied",
            session_id=state.get("session_id"),
            current_step=state.get("current_step"),
            new_messages=len(messages),
            approval=approval,
            has_feedback=feedback is not None,
        )
        return update

    def summarize(self, state: Mapping[str, Any]) -> str:
        return summarize_supervisor(state)

    def approval_request(self, state: Mapping[str, Any]) -> dict[str, Any] | None:
        component = state.get("component_state")
        excerpt = "\n".join(component.code.splitlines()[:10]) if component else None
        return {
            "stepId": SupervisorStep.PREVIEW.value,
            "label": self.step_labels[SupervisorStep.PREVIEW.value],
            "message": "Component ready for preview. Please review and approve.",
            "artifactPath": COMPONENT_ARTIFACT_PATH if component else None,
            "excerpt": excerpt,
        }

    def serialize(self, state: Mapping[str, Any]) -> dict[str, Any]:
        values = serialize_state(dict(state))
        component = state.get("component_state")
        values["componentCode"] = component.code if component else ""
        values["approved"] = state.get("current_step") == SupervisorStep.APPROVED
        return values

    async def on_step_start(self, step: str, state: Mapping[str, Any], context: StepContext) -> None:
        await emit_step_status(context, step, self.step_labels[step], "running")

    async def on_step_end(self, step: str, state: Mapping[str, Any], context: StepContext) -> None:
        status = "waiting" if state.get("awaiting_approval") else "success"
        await emit_step_status(context, step, self.step_labels[step], status)
        await context.emitter.emit(EventType.PROGRESS, {"pct": STEP_PROGRESS[step]})

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "title": "V0GeneratorInput",
            "properties": {
                "messages": {"type": "array"},
                "userApproval": {"type": "boolean"},
                "feedback": {"type": ["string", "null"]},
            },
        }

    def output_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "title": "V0GeneratorOutput",
            "properties": {
                "messages": {"type": "array"},
                "componentState": {"type": "object"},
                "currentStep": {"type": "string"},
                "requirements": {"type": "object"},
                "designSpec": {"type": "object"},
                "iterationCount": {"type": "integer"},
                "awaitingApproval": {"type": "boolean"},
            },
        }
