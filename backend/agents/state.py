"""State shapes for the two generation flows.

Each field declares its reducer through ``Annotated`` metadata; see
:mod:`agents.channels` for the merge semantics.
"""

import uuid
from collections.abc import Mapping
from enum import StrEnum
from typing import Annotated, Any, TypedDict, get_type_hints

from pydantic import BaseModel, TypeAdapter
from pydantic.alias_generators import to_camel, to_snake

from agents.channels import (
    ChannelTable,
    append_messages,
    bounded_append,
    explicit_overwrite,
    last_write_wins,
    merge_step_statuses,
    upsert_artifacts,
)
from agents.errors import UnknownFieldError
from models.generation import (
    Artifact,
    ComponentState,
    DesignSpec,
    Message,
    Requirements,
    StepStatus,
    utc_now_iso,
)

MAX_LOG_ENTRIES = 200


class SupervisorStep(StrEnum):
    """FSM position of the supervisor flow."""

    REQUIREMENTS = "requirements"
    DESIGN = "design"
    CODE = "code"
    PREVIEW = "preview"
    APPROVED = "approved"
    REJECTED = "rejected"


class SupervisorState(TypedDict):
    """The unit of truth for one supervisor conversation thread.

    Attributes:
        messages: Full conversation history, append-only.
        current_step: FSM position (a SupervisorStep value).
        requirements: Parsed requirements, set by the requirements step.
        design_spec: Component design, derived from requirements.
        component_state: Generated code, overwritten on each regeneration.
        user_approval: True only for the tick in which the user approves.
        feedback: Rejection feedback, cleared once consumed.
        iteration_count: Number of feedback loops back to requirements.
        awaiting_approval: Set while the preview is waiting for a human decision.
        session_id: Session identifier (the thread id).
        created_at: ISO timestamp of session creation.
        updated_at: ISO timestamp of the last input or step.
    """

    messages: Annotated[list[Message], append_messages]
    current_step: Annotated[str, last_write_wins]
    requirements: Annotated[Requirements | None, last_write_wins]
    design_spec: Annotated[DesignSpec | None, last_write_wins]
    component_state: Annotated[ComponentState | None, last_write_wins]
    user_approval: Annotated[bool, explicit_overwrite]
    feedback: Annotated[str | None, explicit_overwrite]
    iteration_count: Annotated[int, explicit_overwrite]
    awaiting_approval: Annotated[bool, explicit_overwrite]
    session_id: Annotated[str, last_write_wins]
    created_at: Annotated[str, last_write_wins]
    updated_at: Annotated[str, last_write_wins]


class LinearGeneratorState(TypedDict):
    """State of the legacy seven-step scaffold pipeline.

    ``steps`` maps step id to its :class:`StepStatus`; ``pending_approval_step``
    names the step whose human approval gate is open.
    """

    messages: Annotated[list[Message], append_messages]
    prompt: Annotated[str, last_write_wins]
    component_code: Annotated[str, last_write_wins]
    approved: Annotated[bool, explicit_overwrite]
    current_step: Annotated[str, last_write_wins]
    feedback: Annotated[str | None, explicit_overwrite]
    steps: Annotated[dict[str, StepStatus], merge_step_statuses]
    logs: Annotated[list[str], bounded_append(MAX_LOG_ENTRIES)]
    artifacts: Annotated[list[Artifact], upsert_artifacts]
    prd: Annotated[str | None, last_write_wins]
    progress: Annotated[int, explicit_overwrite]
    awaiting_approval: Annotated[bool, explicit_overwrite]
    pending_approval_step: Annotated[str | None, explicit_overwrite]
    session_id: Annotated[str, last_write_wins]
    created_at: Annotated[str, last_write_wins]
    updated_at: Annotated[str, last_write_wins]


SUPERVISOR_CHANNELS = ChannelTable.from_schema(SupervisorState)
LINEAR_CHANNELS = ChannelTable.from_schema(LinearGeneratorState)

LINEAR_STEPS: tuple[tuple[str, str], ...] = (
    ("spec", "PRD & Decisions"),
    ("schema", "Data Schema"),
    ("ui", "UI Scaffolding"),
    ("apis", "APIs"),
    ("build", "Build"),
    ("fix", "Auto-Fix"),
    ("done", "Done"),
)


def _new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"


def create_supervisor_state(session_id: str | None = None) -> SupervisorState:
    """Create a fresh supervisor state positioned at requirements."""
    now = utc_now_iso()
    return SupervisorState(
        messages=[],
        current_step=SupervisorStep.REQUIREMENTS.value,
        requirements=None,
        design_spec=None,
        component_state=None,
        user_approval=False,
        feedback=None,
        iteration_count=0,
        awaiting_approval=False,
        session_id=session_id or _new_session_id(),
        created_at=now,
        updated_at=now,
    )


def create_linear_state(session_id: str | None = None) -> LinearGeneratorState:
    """Create a fresh linear pipeline state with every step queued."""
    now = utc_now_iso()
    return LinearGeneratorState(
        messages=[],
        prompt="",
        component_code="",
        approved=False,
        current_step="idle",
        feedback=None,
        steps={step_id: StepStatus(id=step_id, label=label) for step_id, label in LINEAR_STEPS},
        logs=[],
        artifacts=[],
        prd=None,
        progress=0,
        awaiting_approval=False,
        pending_approval_step=None,
        session_id=session_id or _new_session_id(),
        created_at=now,
        updated_at=now,
    )


def _to_wire(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {k: _to_wire(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_wire(v) for v in value]
    return value


def serialize_state(state: dict[str, Any]) -> dict[str, Any]:
    """Render a state as a camelCase, JSON-ready dict for the client."""
    return {to_camel(key): _to_wire(value) for key, value in state.items()}


def deserialize_update(schema: type, values: Mapping[str, Any]) -> dict[str, Any]:
    """Validate a client-supplied partial state against a state shape.

    Keys may be camelCase or snake_case. Values are coerced into the field's
    declared type (records become models again).

    Raises:
        UnknownFieldError: If a key is not a field of ``schema``.
        pydantic.ValidationError: If a value does not fit its field type.
    """
    hints = get_type_hints(schema)
    update = {to_snake(key): value for key, value in values.items()}
    unknown = [key for key in update if key not in hints]
    if unknown:
        raise UnknownFieldError(unknown)
    return {key: TypeAdapter(hints[key]).validate_python(value) for key, value in update.items()}
