"""Linear scaffold flow: seven fixed steps with one approval gate.

spec -> schema -> ui -> apis -> build -> fix -> done

The router picks the first step that has not succeeded, skipping ``fix``
when ``build`` succeeded. ``spec`` always opens an approval gate; while the
gate is open the router suspends. Approving marks the gated step successful
and the pipeline continues in the same run; rejecting records feedback,
marks the step ``error`` and the same step is re-entered with the feedback.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

import structlog
from langgraph.graph import END, START

from agents.engine import Flow, Halt, NextAction, RunStep, StepContext, StepFn, Suspend, emit_step_status
from agents.state import LINEAR_CHANNELS, LINEAR_STEPS, LinearGeneratorState, create_linear_state
from agents.steps import SCAFFOLD_STEPS
from agents.steps.scaffold import PRD_PATH, STEP_LABELS, step_entry
from events.types import EventType
from models.generation import Message, StepRunStatus, StepStatus, utc_now_iso

logger = structlog.get_logger(__name__)

LINEAR_ASSISTANT_ID = "v0-generator"
DEFAULT_REJECTION_FEEDBACK = "Changes requested by reviewer."


@dataclass(frozen=True)
class ApprovalDecision:
    step: str
    status: Literal["approved", "rejected"]
    feedback: str | None = None


def parse_approval_decision(run_input: Mapping[str, Any]) -> ApprovalDecision | None:
    """Read ``approval {step, status, feedback}``; anything malformed is ignored."""
    raw = run_input.get("approval")
    if not isinstance(raw, Mapping):
        return None
    step = raw.get("step")
    status = raw.get("status")
    if step not in STEP_LABELS or status not in ("approved", "rejected"):
        return None
    feedback = raw.get("feedback")
    feedback = feedback.strip() or None if isinstance(feedback, str) else None
    return ApprovalDecision(step=step, status=status, feedback=feedback)


def _status_of(entry: Any) -> str | None:
    if entry is None:
        return None
    if isinstance(entry, Mapping):
        return entry.get("status")
    return getattr(entry, "status", None)


def route_linear(state: Mapping[str, Any]) -> NextAction:
    if state.get("awaiting_approval") and state.get("pending_approval_step"):
        return Suspend("approval")

    steps = state.get("steps") or {}
    build_ok = _status_of(steps.get("build")) == StepRunStatus.SUCCESS
    for step_id, _ in LINEAR_STEPS:
        if _status_of(steps.get(step_id)) == StepRunStatus.SUCCESS:
            continue
        if step_id == "fix" and build_ok:
            continue
        return RunStep(step_id)
    return Halt("end")


def resolve_prompt(
    run_input: Mapping[str, Any],
    messages: list[Message],
    state: Mapping[str, Any],
) -> str:
    """Pick the brief the scaffold is generated from.

    Order: latest incoming user message, ``prompt`` in the request, the
    thread's previous prompt, the PRD title, a timestamped default.
    """
    for message in reversed(messages):
        if message.role == "user" and message.text.strip():
            return message.text.strip()

    prompt = run_input.get("prompt")
    if isinstance(prompt, str) and prompt.strip():
        return prompt.strip()

    if state.get("prompt"):
        return state["prompt"]

    prd = state.get("prd")
    if prd:
        return prd.split("\n")[0].lstrip("#").strip() or prd

    return f"Generate a dashboard for: {utc_now_iso()}"


class LinearFlow(Flow):
    """The legacy single-agent scaffold generator."""

    assistant_id = LINEAR_ASSISTANT_ID
    name = "V0 Generator"
    description = "Transforms natural language briefs into Tailwind UI previews."
    metadata = {"tags": ["ui", "preview", "ag-ui"]}
    state_schema = LinearGeneratorState
    channels = LINEAR_CHANNELS
    step_labels = dict(LINEAR_STEPS)
    transitions = {
        START: (*STEP_LABELS, END),
        "spec": (END,),
        "schema": ("ui",),
        "ui": ("apis",),
        "apis": ("build",),
        "build": ("fix", "done"),
        "fix": ("done",),
        "done": (END,),
    }

    def initial_state(self, session_id: str | None = None) -> dict[str, Any]:
        return dict(create_linear_state(session_id))

    def route(self, state: Mapping[str, Any]) -> NextAction:
        return route_linear(state)

    def steps(self) -> dict[str, StepFn]:
        return dict(SCAFFOLD_STEPS)

    async def apply_input(
        self,
        state: Mapping[str, Any],
        run_input: Mapping[str, Any],
        context: StepContext,
    ) -> dict[str, Any]:
        messages = [Message.from_payload(m) for m in run_input.get("messages") or []]
        update: dict[str, Any] = {
            "prompt": resolve_prompt(run_input, messages, state),
            "updated_at": utc_now_iso(),
        }
        if messages:
            update["messages"] = messages

        pending = state.get("pending_approval_step")
        decision = parse_approval_decision(run_input)
        if not (state.get("awaiting_approval") and pending):
            return update
        if decision is None or decision.step != pending:
            logger.info("approval_still_pending", step=pending)
            return update

        label = STEP_LABELS[pending]
        if decision.status == "approved":
            text = f"{label} approved by human reviewer."
            update.update(
                steps=step_entry(pending, StepRunStatus.SUCCESS),
                approved=True,
                awaiting_approval=False,
                pending_approval_step=None,
                feedback=None,
                logs=[text],
            )
            await emit_step_status(context, pending, label, StepRunStatus.SUCCESS)
            await context.emitter.emit(EventType.LOG, {"text": text})
            logger.info("approval_granted", step=pending)
            return update

        note = decision.feedback or "Changes requested by human reviewer."
        update.update(
            steps=step_entry(pending, StepRunStatus.ERROR, note),
            awaiting_approval=False,
            pending_approval_step=None,
            feedback=decision.feedback or DEFAULT_REJECTION_FEEDBACK,
        )
        await emit_step_status(context, pending, label, StepRunStatus.ERROR, note)
        await context.emitter.emit(
            EventType.APPROVAL_REJECTED,
            {"stepId": pending, "feedback": decision.feedback},
        )
        logger.info("approval_rejected", step=pending)
        return update

    def summarize(self, state: Mapping[str, Any]) -> str:
        pending = state.get("pending_approval_step")
        if state.get("awaiting_approval") and pending:
            return f"Awaiting approval for {STEP_LABELS.get(pending, pending)}"
        if isinstance(route_linear(state), Halt):
            return f"Generated scaffold for: {state.get('prompt', '')}"
        return f"Processing: {state.get('current_step')}"

    def completed_step(self, state: Mapping[str, Any]) -> str:
        pending = state.get("pending_approval_step")
        if state.get("awaiting_approval") and pending:
            return pending
        return str(state.get("current_step", ""))

    def approval_request(self, state: Mapping[str, Any]) -> dict[str, Any] | None:
        pending = state.get("pending_approval_step")
        if not pending:
            return None
        prd = state.get("prd") or ""
        excerpt = "\n".join(prd.split("\n")[:10]).strip()
        has_prd_artifact = any(a.path == PRD_PATH for a in state.get("artifacts") or [])
        return {
            "stepId": pending,
            "label": STEP_LABELS.get(pending, pending),
            "message": "Review the PRD draft and approve to continue.",
            "artifactPath": PRD_PATH if has_prd_artifact else None,
            "excerpt": excerpt or None,
        }

    async def on_step_start(self, step: str, state: Mapping[str, Any], context: StepContext) -> None:
        await emit_step_status(context, step, STEP_LABELS[step], StepRunStatus.RUNNING)

    async def on_step_end(self, step: str, state: Mapping[str, Any], context: StepContext) -> None:
        entry: StepStatus = state["steps"][step]
        await context.emitter.emit(EventType.STEP_STATUS, entry.to_wire())
        await context.emitter.emit(EventType.PROGRESS, {"pct": state.get("progress", 0)})

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "title": "GeneratorInput",
            "properties": {
                "messages": {"type": "array"},
                "prompt": {"type": "string"},
                "approval": {
                    "type": "object",
                    "properties": {
                        "step": {"type": "string"},
                        "status": {"type": "string", "enum": ["approved", "rejected"]},
                        "feedback": {"type": "string"},
                    },
                },
            },
        }

    def output_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "title": "GeneratorOutput",
            "properties": {
                "componentCode": {"type": "string"},
                "approved": {"type": "boolean"},
                "currentStep": {"type": "string"},
                "steps": {"type": "object"},
                "artifacts": {"type": "array"},
                "logs": {"type": "array"},
                "prd": {"type": "string"},
                "progress": {"type": "number"},
                "awaitingApproval": {"type": "boolean"},
                "pendingApprovalStep": {"type": ["string", "null"]},
            },
        }
