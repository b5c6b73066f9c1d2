"""Error taxonomy for generation flows.

Step errors are never retried inside a flow. They propagate out of the
state machine unchanged and are reported by the run adapter as an
``error`` stream event, leaving the last committed state untouched.
"""


class GenerationError(Exception):
    """Base class for all errors raised while running a generation flow."""


class MissingInputError(GenerationError):
    """No user message is available for the requirements step to parse."""


class MissingPrecursorError(GenerationError):
    """A step ran before the state it depends on was produced.

    This indicates a routing bug: the router should never dispatch a step
    whose precondition is unmet.
    """


class MalformedLLMResponseError(GenerationError):
    """The LLM output could not be parsed into the expected schema."""

    def __init__(self, message: str, raw_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response


class CodeGenerationError(GenerationError):
    """The LLM call failed (or returned nothing) during code generation."""


class UnknownStepError(GenerationError):
    """A state carried a ``current_step`` the router does not recognize.

    The supervisor router catches this and restarts at requirements rather
    than failing the run.
    """

    def __init__(self, step: object) -> None:
        super().__init__(f"Unknown step: {step!r}")
        self.step = step


class UnknownFieldError(GenerationError):
    """A partial state update carried fields the state shape does not define."""

    def __init__(self, fields: list[str]) -> None:
        super().__init__(f"Unknown state field(s): {', '.join(sorted(fields))}")
        self.fields = sorted(fields)
