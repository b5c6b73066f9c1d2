"""Code generator step.

Sends requirements and the design spec to the LLM and stores the returned
HTML/Tailwind markup as the thread's component state.
"""

from collections.abc import Mapping
from typing import Any

import structlog

from agents.engine import StepContext
from agents.errors import CodeGenerationError, MissingPrecursorError
from agents.prompts import get_code_generator_prompt
from agents.state import SupervisorStep
from agents.utils import strip_code_fences
from events.types import EventType
from models.generation import Artifact, ComponentState

logger = structlog.get_logger(__name__)

COMPONENT_ARTIFACT_PATH = "component.html"


async def generate_code(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    """Generate component markup.

    Raises:
        MissingPrecursorError: If requirements or the design spec are missing.
        CodeGenerationError: If the LLM call fails or returns no code. The
            prior ``component_state`` is left untouched.
    """
    requirements = state.get("requirements")
    design_spec = state.get("design_spec")
    if requirements is None or design_spec is None:
        raise MissingPrecursorError("Code generator requires requirements and a design spec")

    try:
        response = await context.llm.complete(
            get_code_generator_prompt(requirements, design_spec),
            requirements.raw_input,
            model=context.model,
            temperature=context.code_temperature,
        )
    except Exception as e:
        logger.error("code_generation_failed", error_type=type(e).__name__, error=str(e))
        raise CodeGenerationError(f"Code generation failed: {e}") from e

    code = strip_code_fences(response)
    if not code:
        raise CodeGenerationError("Code generation returned no code")

    component = ComponentState(
        code=code,
        language="html",
        framework="tailwind",
        dependencies=["tailwindcss"],
        validated="<" in code,
        errors=[] if "<" in code else ["Response does not look like HTML markup"],
    )
    await context.emitter.emit(
        EventType.ARTIFACT,
        {
            "file": Artifact(
                path=COMPONENT_ARTIFACT_PATH,
                title="Generated Component",
                language="html",
                contents=code,
            ).to_wire()
        },
    )

    logger.info("code_generated", chars=len(code), validated=component.validated)
    return {
        "component_state": component,
        "current_step": SupervisorStep.PREVIEW.value,
    }
