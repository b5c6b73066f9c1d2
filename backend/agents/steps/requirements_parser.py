"""Requirements parser step.

Turns the latest user message into a structured :class:`Requirements`
record with one LLM call and hands off to the component designer.
"""

from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from agents.engine import StepContext
from agents.errors import MalformedLLMResponseError, MissingInputError
from agents.prompts import REQUIREMENTS_SYSTEM_PROMPT, get_requirements_user_prompt
from agents.state import SupervisorStep
from agents.utils import extract_json_from_response
from models.generation import Message, Requirements

logger = structlog.get_logger(__name__)


def latest_user_text(messages: list[Message]) -> str:
    """Text of the most recent user message.

    Raises:
        MissingInputError: If there is no user message with text.
    """
    for message in reversed(messages):
        if message.role == "user":
            if not message.text.strip():
                raise MissingInputError("Latest user message has no text content")
            return message.text
    raise MissingInputError("No user message found")


def parse_requirements_response(response: str, raw_input: str) -> Requirements:
    """Parse the model's JSON reply, filling defaults for missing fields.

    Raises:
        MalformedLLMResponseError: If no JSON object can be recovered or it
            does not fit the requirements shape.
    """
    parsed = extract_json_from_response(response)
    if parsed is None:
        raise MalformedLLMResponseError(
            "Requirements response is not valid JSON", raw_response=response
        )
    parsed.pop("raw_input", None)
    parsed["rawInput"] = raw_input
    try:
        return Requirements.model_validate(parsed)
    except ValidationError as e:
        raise MalformedLLMResponseError(
            f"Requirements response has an unexpected shape: {e.error_count()} error(s)",
            raw_response=response,
        ) from e


async def parse_requirements(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    user_text = latest_user_text(state.get("messages") or [])
    previous: Requirements | None = state.get("requirements")

    logger.info(
        "parsing_requirements",
        session_id=state.get("session_id"),
        iteration=state.get("iteration_count", 0),
        has_previous=previous is not None,
    )

    response = await context.llm.complete(
        REQUIREMENTS_SYSTEM_PROMPT,
        get_requirements_user_prompt(user_text, previous),
        model=context.model,
        temperature=context.requirements_temperature,
    )
    requirements = parse_requirements_response(response, user_text)

    logger.info(
        "requirements_extracted",
        features=len(requirements.features),
        clarification_needed=requirements.clarification_needed,
    )
    return {
        "requirements": requirements,
        "current_step": SupervisorStep.DESIGN.value,
    }
