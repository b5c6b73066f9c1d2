"""Preview and iteration step: the human-in-the-loop gate of the supervisor.

Three branches:
- approved: append the approval message and move to ``approved``
- feedback: replay the feedback as a user message and loop back to
  requirements with ``iteration_count`` advanced
- neither: announce the preview and mark the state as awaiting approval
"""

from collections.abc import Mapping
from typing import Any

import structlog

from agents.engine import StepContext
from agents.state import SupervisorStep
from models.generation import Message

logger = structlog.get_logger(__name__)

APPROVED_MESSAGE = "Component approved! Ready to export."
READY_MESSAGE = "Component ready for preview. Please review and approve."


async def preview_iteration(state: Mapping[str, Any], context: StepContext) -> dict[str, Any]:
    feedback = (state.get("feedback") or "").strip()

    if state.get("user_approval"):
        logger.info("component_approved", session_id=state.get("session_id"))
        return {
            "messages": [Message.text_message("assistant", APPROVED_MESSAGE)],
            "current_step": SupervisorStep.APPROVED.value,
            "user_approval": False,
            "feedback": None,
            "awaiting_approval": False,
        }

    if feedback:
        iteration = state.get("iteration_count", 0) + 1
        logger.info("feedback_loop", iteration=iteration)
        return {
            "messages": [Message.text_message("user", feedback)],
            "current_step": SupervisorStep.REQUIREMENTS.value,
            "iteration_count": iteration,
            "user_approval": False,
            "feedback": None,
            "awaiting_approval": False,
        }

    return {
        "messages": [Message.text_message("assistant", READY_MESSAGE)],
        "awaiting_approval": True,
    }
