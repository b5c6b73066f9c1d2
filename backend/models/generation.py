"""Typed records that flow through generation state.

These models replace the loosely typed partial objects of a JS-style state
bag: each record validates on construction and serializes to camelCase JSON
for the browser client.
"""

import time
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(UTC).isoformat()


class WireModel(BaseModel):
    """Base model using camelCase aliases on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


MessageRole = Literal["user", "assistant", "system", "tool"]

_ROLE_TO_TYPE: dict[str, str] = {
    "user": "human",
    "assistant": "ai",
    "system": "system",
    "tool": "tool",
}
_TYPE_TO_ROLE: dict[str, str] = {v: k for k, v in _ROLE_TO_TYPE.items()}


class MessageContent(WireModel):
    """One content part of a message."""

    type: Literal["text", "image"] = "text"
    text: str | None = None
    image_url: str | None = None


class Message(WireModel):
    """A single chat message in a session's history."""

    id: str = Field(default_factory=lambda: f"msg-{uuid.uuid4().hex[:12]}")
    role: MessageRole
    type: Literal["human", "ai", "system", "tool"] | None = None
    content: list[MessageContent] = Field(default_factory=list)
    created_at: str = Field(default_factory=utc_now_iso)

    def model_post_init(self, __context: Any) -> None:
        if self.type is None:
            self.type = _ROLE_TO_TYPE[self.role]  # type: ignore[assignment]

    @classmethod
    def text_message(cls, role: MessageRole, text: str) -> "Message":
        return cls(role=role, content=[MessageContent(type="text", text=text)])

    @classmethod
    def from_payload(cls, payload: Any) -> "Message":
        """Normalize a client-supplied message.

        Accepts string content or a list of content parts, and either a
        ``role`` or a LangChain-style ``type`` (human/ai/...).
        """
        if isinstance(payload, Message):
            return payload
        if not isinstance(payload, dict):
            raise ValueError(f"Message must be an object, got {type(payload).__name__}")

        data = dict(payload)
        role = data.get("role") or _TYPE_TO_ROLE.get(str(data.get("type")), "user")
        content = data.get("content", [])
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]

        kwargs: dict[str, Any] = {"role": role, "content": content}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        created_at = data.get("createdAt") or data.get("created_at")
        if created_at:
            kwargs["created_at"] = str(created_at)
        return cls.model_validate(kwargs)

    @property
    def text(self) -> str:
        """The first text part of the message, or an empty string."""
        for part in self.content:
            if part.type == "text" and part.text:
                return part.text
        return ""


# ---------------------------------------------------------------------------
# Supervisor records
# ---------------------------------------------------------------------------


class Styling(WireModel):
    """Styling preferences extracted from the user's request."""

    theme: Literal["light", "dark", "auto"] = "light"
    color_scheme: str = "blue"
    layout: str = "modern"

    @field_validator("theme", mode="before")
    @classmethod
    def _coerce_theme(cls, v: Any) -> str:
        if isinstance(v, str) and v.strip().lower() in ("light", "dark", "auto"):
            return v.strip().lower()
        return "light"

    @field_validator("color_scheme", "layout", mode="before")
    @classmethod
    def _coerce_text(cls, v: Any, info: Any) -> str:
        if isinstance(v, str) and v.strip():
            return v.strip()
        return "blue" if info.field_name == "color_scheme" else "modern"


class Requirements(WireModel):
    """Structured requirements produced by the requirements step."""

    raw_input: str
    features: list[str] = Field(default_factory=list)
    styling: Styling = Field(default_factory=Styling)
    components: list[str] = Field(default_factory=list)
    clarification_needed: bool = False
    clarification_questions: list[str] = Field(default_factory=list)

    @field_validator("features", "components", "clarification_questions", mode="before")
    @classmethod
    def _coerce_string_list(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v] if v.strip() else []
        if isinstance(v, (list, tuple, set)):
            # Sets of features keep first-seen order.
            return list(dict.fromkeys(str(item).strip() for item in v if str(item).strip()))
        raise ValueError("expected a list of strings")

    @field_validator("styling", mode="before")
    @classmethod
    def _coerce_styling(cls, v: Any) -> Any:
        return v if isinstance(v, (dict, Styling)) else {}

    @field_validator("clarification_needed", mode="before")
    @classmethod
    def _coerce_flag(cls, v: Any) -> bool:
        return bool(v)


class DesignLayout(WireModel):
    type: Literal["flex", "grid", "stack"]
    direction: str = "column"
    spacing: str | None = None
    padding: str | None = None


class DesignStyling(WireModel):
    framework: str = "tailwind"
    theme: str | None = None
    color_scheme: str | None = None
    classes: dict[str, list[str]] = Field(default_factory=dict)


class Interaction(WireModel):
    trigger: str
    action: str
    target: str


class DesignSpec(WireModel):
    """Component structure derived deterministically from requirements."""

    component_hierarchy: list[str]
    layout: DesignLayout
    styling: DesignStyling
    interactions: list[Interaction] = Field(default_factory=list)


class ComponentState(WireModel):
    """Generated component code and its validation result."""

    code: str
    language: str = "html"
    framework: str = "tailwind"
    dependencies: list[str] = Field(default_factory=list)
    validated: bool = False
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Linear pipeline records
# ---------------------------------------------------------------------------


class StepRunStatus(StrEnum):
    """Status of one step in the linear pipeline."""

    QUEUED = "queued"
    RUNNING = "running"
    WAITING = "waiting"
    SUCCESS = "success"
    ERROR = "error"


class StepStatus(WireModel):
    id: str
    label: str
    status: StepRunStatus = StepRunStatus.QUEUED
    note: str | None = None


class Artifact(WireModel):
    """A generated file surfaced to the client."""

    path: str
    title: str | None = None
    language: str | None = None
    contents: str
    created_at: float = Field(default_factory=time.time)
