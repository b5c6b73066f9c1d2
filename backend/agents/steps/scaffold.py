"""Steps of the linear scaffold pipeline.

spec -> schema -> ui -> apis -> build -> fix -> done

Every step returns its log lines, artifacts and its own ``steps`` entry as a
partial update; the linear flow emits the matching ``step-status`` and
``progress`` events around each step. Only ``spec`` opens an approval gate.
"""

from collections.abc import Mapping
from typing import Any

import structlog

from agents.engine import StepContext
from agents.prompts import PREVIEW_SYSTEM_PROMPT, get_preview_user_prompt
from agents.state import LINEAR_STEPS
from agents.templates import (
    build_fallback_component,
    generate_api_routes,
    generate_schema,
    generate_spec,
    sanitize_preview_html,
)
from events.types import EventType
from models.generation import Artifact, StepRunStatus, StepStatus

logger = structlog.get_logger(__name__)

STEP_LABELS: dict[str, str] = dict(LINEAR_STEPS)
PRD_PATH = "docs/specs/PRD.md"


def progress_for(step_id: str) -> int:
    """Percentage complete once ``step_id`` has finished."""
    index = [step for step, _ in LINEAR_STEPS].index(step_id)
    return min(100, round((index + 1) / len(LINEAR_STEPS) * 100))


def step_entry(step_id: str, status: StepRunStatus, note: str | None = None) -> dict[str, StepStatus]:
    return {step_id: StepStatus(id=step_id, label=STEP_LABELS[step_id], status=status, note=note)}


class _StepOutput:
    """Collects the logs and artifacts of one step while emitting them."""

    def __init__(self, context: StepContext, step_id: str) -> None:
        self.context = context
        self.step_id = step_id
        self.logs: list[str] = []
        self.artifacts: list[Artifact] = []

    async def log(self, text: str) -> None:
        self.logs.append(text)
        await self.context.emitter.emit(EventType.LOG, {"text": text})

    async def artifact(self, artifact: Artifact) -> None:
        self.artifacts.append(artifact)
        await self.context.emitter.emit(EventType.ARTIFACT, {"file": artifact.to_wire()})

    def finish(self, status: StepRunStatus = StepRunStatus.SUCCESS, note: str | None = None, **fields: Any) -> dict[str, Any]:
        update: dict[str, Any] = {
            "current_step": self.step_id,
            "steps": step_entry(self.step_id, status, note),
            "progress": progress_for(self.step_id),
            **fields,
        }
        if self.logs:
            update["logs"] = self.logs
        if self.artifacts:
            update["artifacts"] = self.artifacts
        return update


async def run_spec(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    out = _StepOutput(context, "spec")
    prompt = state.get("prompt") or ""
    feedback = state.get("feedback")

    await out.log("Analyzing your requirements and generating PRD...")
    prd = generate_spec(prompt, feedback)
    await out.artifact(
        Artifact(path=PRD_PATH, title="Product Requirements", language="markdown", contents=prd)
    )
    await context.emitter.emit(EventType.PRD, {"prd": prd})
    await out.log("PRD generated. Please review and approve.")

    return out.finish(
        StepRunStatus.WAITING,
        "Awaiting human approval",
        prd=prd,
        awaiting_approval=True,
        pending_approval_step="spec",
    )


async def run_schema(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    out = _StepOutput(context, "schema")
    await out.artifact(
        Artifact(
            path="schema.prisma",
            title="Database Schema",
            language="prisma",
            contents=generate_schema(state.get("prompt") or ""),
        )
    )
    await out.log("Data schema drafted using inferred entities.")
    return out.finish()


async def build_preview_markup(prompt: str, feedback: str | None, context: StepContext) -> str:
    """Ask the LLM for a preview snippet, falling back to a static template."""
    try:
        response = await context.llm.complete(
            PREVIEW_SYSTEM_PROMPT,
            get_preview_user_prompt(prompt, feedback),
            model=context.model,
            temperature=context.scaffold_temperature,
        )
    except Exception as e:
        logger.warning("preview_generation_failed", error_type=type(e).__name__, error=str(e))
        return build_fallback_component(prompt)

    markup = sanitize_preview_html(response)
    return markup or build_fallback_component(prompt)


async def run_ui(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    out = _StepOutput(context, "ui")
    code = await build_preview_markup(state.get("prompt") or "", state.get("feedback"), context)
    await out.artifact(
        Artifact(
            path="app/components/Preview.tsx",
            title="Preview Component",
            language="tsx",
            contents=code,
        )
    )
    await out.log("UI scaffold generated (Tailwind + shadcn).")
    return out.finish(component_code=code)


async def run_apis(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    out = _StepOutput(context, "apis")
    await out.artifact(
        Artifact(
            path="app/api/routes.md",
            title="API Routes",
            language="markdown",
            contents=generate_api_routes(state.get("prompt") or ""),
        )
    )
    await out.log("REST API routes outlined for core entities.")
    return out.finish()


async def run_build(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    out = _StepOutput(context, "build")
    await out.log("Running build...")
    await out.log("Build completed successfully.")
    return out.finish()


async def run_fix(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    out = _StepOutput(context, "fix")
    await out.log("No fix needed. Build is green.")
    return out.finish()


async def run_done(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    out = _StepOutput(context, "done")
    await out.log("All steps completed. Project ready for review.")
    return out.finish(awaiting_approval=False, pending_approval_step=None)


SCAFFOLD_STEPS = {
    "spec": run_spec,
    "schema": run_schema,
    "ui": run_ui,
    "apis": run_apis,
    "build": run_build,
    "fix": run_fix,
    "done": run_done,
}
