"""Event type definitions for generation runs.

Every event a run produces is delivered to the browser as one
server-sent-event frame. Event names match what the frontend listens for.
"""

import json
import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event names a run can stream.

    Events are categorized by:
    - Run lifecycle: start, finish, error and the internal close sentinel
    - Progress: per-step status, percentage, log lines
    - Outputs: PRD text, generated artifacts, full state snapshots
    - Human-in-the-loop: approval requests and rejections
    """

    # Run lifecycle
    RUN_STARTED = "run-started"
    RUN_FINISHED = "run-finished"
    ERROR = "error"
    RUN_CLOSED = "run-closed"

    # Progress
    STEP_STATUS = "step-status"
    PROGRESS = "progress"
    LOG = "log"

    # Outputs
    PRD = "prd"
    ARTIFACT = "artifact"
    VALUES = "values"

    # Human-in-the-loop
    APPROVAL_REQUIRED = "approval-required"
    APPROVAL_REJECTED = "approval-rejected"


class RunEvent(BaseModel):
    """An event emitted during a run.

    Payload schemas by event type:

    RUN_STARTED:
        - runId: str
        - threadId: str

    STEP_STATUS:
        - id: str - step id
        - label: str - human-readable step name
        - status: str - queued | running | waiting | success | error
        - note: Optional[str]

    PROGRESS:
        - pct: int - 0..100

    LOG:
        - text: str

    PRD:
        - prd: str - PRD markdown

    ARTIFACT:
        - file: {path, title, language, contents, createdAt}

    APPROVAL_REQUIRED:
        - stepId, label, message, artifactPath, excerpt

    APPROVAL_REJECTED:
        - stepId, feedback

    VALUES:
        - the full camelCase state

    RUN_FINISHED:
        - runId, summary, completedStep, outcome

    ERROR:
        - runId, message, errorType
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    thread_id: str
    run_id: str
    data: Any = Field(default_factory=dict)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "step-status",
                    "timestamp": 1699876543.123,
                    "thread_id": "thread-abc123",
                    "run_id": "run-def456",
                    "data": {"id": "design", "label": "Component Designer", "status": "success"},
                }
            ]
        }
    }

    def to_sse(self) -> str:
        """Format the event as one SSE frame: ``event: X\\ndata: json\\n\\n``."""
        return f"event: {self.type.value}\ndata: {json.dumps(self.data)}\n\n"
