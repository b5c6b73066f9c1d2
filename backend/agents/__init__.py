"""Generation flows, steps, prompts and LLM integration.

This module exports the key components needed to run a generation:
- The flow engine (StateMachine, Flow and the NextAction results)
- The supervisor flow and the legacy linear scaffold flow
- The error taxonomy raised by steps
- LLM client utilities
"""

from agents.engine import (
    Flow,
    Halt,
    NextAction,
    RunOutcome,
    RunStep,
    StateMachine,
    StepContext,
    Suspend,
)
from agents.errors import (
    CodeGenerationError,
    GenerationError,
    MalformedLLMResponseError,
    MissingInputError,
    MissingPrecursorError,
    UnknownFieldError,
    UnknownStepError,
)
from agents.linear_graph import LINEAR_ASSISTANT_ID, LinearFlow
from agents.supervisor_graph import SUPERVISOR_ASSISTANT_ID, SupervisorFlow, route_supervisor
from agents.utils import LLMClient, MockLLMClient, extract_json_from_response

__all__ = [
    # Engine
    "Flow",
    "Halt",
    "NextAction",
    "RunOutcome",
    "RunStep",
    "StateMachine",
    "StepContext",
    "Suspend",
    # Errors
    "CodeGenerationError",
    "GenerationError",
    "MalformedLLMResponseError",
    "MissingInputError",
    "MissingPrecursorError",
    "UnknownFieldError",
    "UnknownStepError",
    # Flows
    "LINEAR_ASSISTANT_ID",
    "LinearFlow",
    "SUPERVISOR_ASSISTANT_ID",
    "SupervisorFlow",
    "route_supervisor",
    # Utils
    "LLMClient",
    "MockLLMClient",
    "extract_json_from_response",
]
